"""Flattening of repository/target names into separator-free tokens."""

import re

DEFAULT_JOINER = "-"

_PATH_SEPARATORS = re.compile(r"[/\\]")
_URL_SEPARATORS = re.compile(r"[/\\.]")


def flatten_path(value: str, joiner: str = DEFAULT_JOINER) -> str:
    """Flatten a name into a single path segment (replaces path separators)."""
    return _PATH_SEPARATORS.sub(joiner, value)


def flatten_url(value: str, joiner: str = DEFAULT_JOINER) -> str:
    """Flatten a name into a URL token.

    Replaces separators both for paths and for subdomains, so the result is
    also safe as a hostname label.
    """
    return _URL_SEPARATORS.sub(joiner, value)
