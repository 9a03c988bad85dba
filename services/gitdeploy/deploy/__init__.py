"""
Deployment core: target resolution, locking, launching.

The filesystem is the only state shared between the service and its build
workers; every path is derived from the repository and target names.
"""
