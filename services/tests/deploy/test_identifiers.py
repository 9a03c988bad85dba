"""Tests for name flattening."""

import pytest

from gitdeploy.deploy.identifiers import flatten_path, flatten_url


class TestFlattenPath:
    def test_replaces_path_separators(self):
        assert flatten_path("grp/app") == "grp-app"
        assert flatten_path("grp\\app") == "grp-app"

    def test_keeps_dots(self):
        assert flatten_path("rc2.1") == "rc2.1"

    def test_custom_joiner(self):
        assert flatten_path("a/b/c", joiner="_") == "a_b_c"


class TestFlattenUrl:
    def test_replaces_dots_and_separators(self):
        assert flatten_url("grp/app.v2") == "grp-app-v2"
        assert flatten_url("2.1") == "2-1"

    @pytest.mark.parametrize("name", ["grp/app", "feature/x.y", "a\\b.c/d", "plain"])
    def test_derivable_from_path_segment(self, name):
        assert flatten_url(flatten_path(name)) == flatten_url(name)

    def test_deterministic(self):
        assert flatten_url("x/y.z") == flatten_url("x/y.z")
