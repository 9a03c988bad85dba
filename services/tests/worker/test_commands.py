"""Tests for post-update / post-remove command execution."""

import pytest

from gitdeploy.config import ScriptCommand, ShellCommand, normalize_commands, parse_command
from gitdeploy.errors import ProcessExecutionError
from gitdeploy.worker.commands import DATA_FILE_ENV, CommandRunner


class TestParseCommand:
    def test_python_script_string(self):
        assert parse_command("deploy.py --fast") == ScriptCommand(path="deploy.py", args=["--fast"])

    def test_shell_string(self):
        assert parse_command("npm ci && npm run build") == ShellCommand(
            command="npm ci && npm run build"
        )

    def test_argv_list(self):
        assert parse_command(["make", "install", 1]) == ShellCommand(
            command="make", args=["install", "1"]
        )
        assert parse_command(["tools/x.py", "a"]) == ScriptCommand(path="tools/x.py", args=["a"])

    def test_explicit_mapping(self):
        assert parse_command({"script": "run", "args": ["x"]}) == ScriptCommand(
            path="run", args=["x"]
        )
        assert parse_command({"shell": "ls"}) == ShellCommand(command="ls")

    @pytest.mark.parametrize("entry", ["", "   ", [], {"other": 1}, 42])
    def test_invalid_entries(self, entry):
        with pytest.raises(ValueError):
            parse_command(entry)

    def test_single_entry_becomes_list(self):
        assert normalize_commands("make") == [ShellCommand(command="make")]
        assert normalize_commands(None) == []

    def test_shell_args_are_quoted(self):
        assert ShellCommand(command="echo", args=["a b", "c"]).command_line() == "echo 'a b' c"


class TestCommandRunner:
    def test_shell_command_gets_data_file(self, tmp_path):
        runner = CommandRunner("/data/public/grp-app/main/build.json", str(tmp_path))
        runner.run(ShellCommand(command=f'echo "${DATA_FILE_ENV}" > out.txt'))

        assert (tmp_path / "out.txt").read_text().strip() == "/data/public/grp-app/main/build.json"

    def test_script_runs_with_own_interpreter(self, tmp_path):
        script = tmp_path / "hook.py"
        script.write_text(
            "import os, sys\n"
            "with open('script.txt', 'w') as f:\n"
            f"    f.write(os.environ['{DATA_FILE_ENV}'] + ' ' + sys.argv[1])\n"
        )
        runner = CommandRunner("/meta/build.json", str(tmp_path))
        runner.run(ScriptCommand(path="hook.py", args=["arg1"]))

        assert (tmp_path / "script.txt").read_text() == "/meta/build.json arg1"

    def test_runs_in_order(self, tmp_path):
        runner = CommandRunner("/meta/build.json", str(tmp_path))
        count = runner.run_all(
            [ShellCommand(command="echo one >> log"), ShellCommand(command="echo two >> log")]
        )

        assert count == 2
        assert (tmp_path / "log").read_text().split() == ["one", "two"]

    def test_first_failure_stops_the_rest(self, tmp_path):
        runner = CommandRunner("/meta/build.json", str(tmp_path))

        with pytest.raises(ProcessExecutionError) as exc_info:
            runner.run_all([ShellCommand(command="exit 4"), ShellCommand(command="touch never")])

        assert exc_info.value.returncode == 4
        assert exc_info.value.exit_code == 4
        assert not (tmp_path / "never").exists()

    def test_missing_script_fails(self, tmp_path):
        runner = CommandRunner("/meta/build.json", str(tmp_path))

        with pytest.raises(ProcessExecutionError) as exc_info:
            runner.run(ScriptCommand(path="missing.py"))

        assert exc_info.value.returncode == 2

    def test_signal_termination(self, tmp_path):
        runner = CommandRunner("/meta/build.json", str(tmp_path))

        with pytest.raises(ProcessExecutionError) as exc_info:
            runner.run(ShellCommand(command="kill -TERM $$"))

        assert exc_info.value.signal == 15
        assert exc_info.value.returncode is None
        assert exc_info.value.exit_code == 1
