"""
Build worker.

Run as: python -m gitdeploy.worker <path/to/build.json>

Spawned by the launcher for every build, but runnable on its own for
debugging or recovery; all state comes from the metadata file.
"""
