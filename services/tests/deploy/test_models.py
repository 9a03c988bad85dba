"""Tests for build metadata persistence and the derived layout."""

import json
import os

import pytest

from gitdeploy.config import ScriptCommand, ShellCommand
from gitdeploy.deploy.models import Action, BuildMetadata, DeploymentPaths
from gitdeploy.deploy.resolver import TargetResolver


class TestDeploymentPaths:
    def test_same_inputs_same_paths(self, settings):
        assert DeploymentPaths.for_target(settings, "grp-app", "2.1") == (
            DeploymentPaths.for_target(settings, "grp-app", "2.1")
        )

    def test_matches_resolved_descriptor(self, settings):
        descriptor = TargetResolver(settings).resolve("grp/app", "refs/tags/rc2.1")
        paths = DeploymentPaths.for_target(settings, descriptor.repo.path, descriptor.path)

        assert paths.private_path == descriptor.private_path
        assert paths.public_path == descriptor.public_path
        assert paths.checkout_path == descriptor.checkout_path
        assert paths.url == descriptor.url
        assert paths.www_dst_path == descriptor.www_dst_path
        assert paths.metadata_file == descriptor.metadata_file

    @pytest.mark.parametrize(
        ("first", "second"),
        [
            (("grp-app", "2.1"), ("grp-app", "2-1")),
            (("a", "b-c"), ("a-b", "c")),
        ],
    )
    def test_build_directories_disjoint(self, settings, first, second):
        one = DeploymentPaths.for_target(settings, *first)
        other = DeploymentPaths.for_target(settings, *second)

        for a, b in [(one, other), (other, one)]:
            assert os.path.commonpath([a.private_path, b.private_path]) != a.private_path
            assert os.path.commonpath([a.public_path, b.public_path]) != a.public_path
            assert not b.checkout_path.startswith(a.private_path + os.sep)
        # Web link names flatten dots and dashes alike and may coincide;
        # the worker only replaces or removes a link into its own checkout.
        assert one.www_dst_path == other.www_dst_path


class TestBuildMetadata:
    def test_written_with_camel_case_keys(self, settings, tmp_path):
        descriptor = TargetResolver(settings).resolve(
            "grp/app", "refs/tags/rc2.1", git_url="git@x:grp/app.git", checkout_sha="abc123"
        )
        path = tmp_path / "build.json"
        BuildMetadata.from_descriptor(descriptor).write(path)

        data = json.loads(path.read_text())
        assert data["checkoutSha"] == "abc123"
        assert data["gitUrl"] == "git@x:grp/app.git"
        assert data["privatePath"] == descriptor.private_path
        assert data["action"] == "update"
        assert data["repo"] == {"name": "App", "id": "grp-app", "path": "grp-app"}
        assert "launchedAt" in data

    def test_secret_not_written(self, settings, tmp_path):
        descriptor = TargetResolver(settings).resolve("grp/secret-app", "refs/heads/main")
        path = tmp_path / "build.json"
        BuildMetadata.from_descriptor(descriptor).write(path)
        assert "s3cret" not in path.read_text()

    def test_read_back(self, settings, tmp_path):
        descriptor = TargetResolver(settings).resolve("grp/app", "refs/heads/main")
        path = tmp_path / "build.json"
        written = BuildMetadata.from_descriptor(descriptor)
        written.write(path)

        loaded = BuildMetadata.read(path)
        assert loaded.url == descriptor.url
        assert loaded.launched_at == written.launched_at

    def test_legacy_action_names(self, settings):
        descriptor = TargetResolver(settings).resolve("grp/app", "refs/heads/main")
        raw = json.loads(BuildMetadata.from_descriptor(descriptor).to_json())
        raw["action"] = "delete"
        assert BuildMetadata.model_validate(raw).action is Action.REMOVE

    def test_commands_kept_typed(self, settings):
        descriptor = TargetResolver(settings).resolve("grp/app", "refs/heads/main")
        descriptor = descriptor.model_copy(
            update={"postupdate": [ScriptCommand(path="deploy.py"), ShellCommand(command="make")]}
        )
        raw = json.loads(BuildMetadata.from_descriptor(descriptor).to_json())
        loaded = BuildMetadata.model_validate(raw)

        assert loaded.postupdate == [ScriptCommand(path="deploy.py"), ShellCommand(command="make")]

    def test_with_action(self, settings):
        descriptor = TargetResolver(settings).resolve("grp/app", "refs/heads/main")
        removal = descriptor.with_action(Action.REMOVE)
        assert removal.action is Action.REMOVE
        assert descriptor.action is Action.UPDATE
        assert os.path.basename(removal.metadata_file) == "build.json"
