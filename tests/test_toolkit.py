"""Tests for the default deployment toolkit and command building."""

import itertools
import os
import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from fusion_deploy import toolkit as toolkit_module
from fusion_deploy.context import DeployMode
from fusion_deploy.exceptions import ExecutionError
from fusion_deploy.executor import build_msi_command, build_process_command, run_command
from fusion_deploy.toolkit import DeploymentToolkit


class RecordingRunner:
    """Stands in for run_command inside the toolkit module."""

    def __init__(self, exit_code=0):
        self.exit_code = exit_code
        self.commands = []

    def __call__(self, command, log_file, logger, timeout=None, cwd=None):
        self.commands.append(command)
        return self.exit_code


@pytest.fixture
def runner(monkeypatch):
    recorder = RecordingRunner()
    monkeypatch.setattr(toolkit_module, "run_command", recorder)
    return recorder


class TestCommandBuilding:
    """Tests for process and msiexec command lines."""

    def test_process_command(self):
        cmd = build_process_command(Path("C:/Files/setup.exe"), ["/Type", "silent"])
        assert cmd == [str(Path("C:/Files/setup.exe")), "/Type", "silent"]

    def test_msi_uninstall_by_product_code(self):
        cmd = build_msi_command("uninstall", "{A7C1B6E2-5D3F-4C8A-9E21-3F6B0D4E8A17}")
        assert cmd == [
            "msiexec.exe", "/x", "{A7C1B6E2-5D3F-4C8A-9E21-3F6B0D4E8A17}",
            "REBOOT=ReallySuppress", "/qn",
        ]

    def test_msi_install_with_transform_patch_and_log(self):
        cmd = build_msi_command(
            "install", "C:/Files/app.msi",
            interactive=True,
            transform="C:/Files/app.mst",
            patch="C:/Files/fix.msp",
            args=["ALLUSERS=1"],
            log_file=Path("C:/Logs/app_msi.log"),
        )
        assert cmd[:3] == ["msiexec.exe", "/i", "C:/Files/app.msi"]
        assert "TRANSFORMS=C:/Files/app.mst" in cmd
        assert "PATCH=C:/Files/fix.msp" in cmd
        assert "ALLUSERS=1" in cmd
        assert "/qb-!" in cmd
        assert cmd[-2:] == ["/L*v", str(Path("C:/Logs/app_msi.log"))]

    def test_unknown_msi_action(self):
        with pytest.raises(ExecutionError):
            build_msi_command("advertise", "C:/Files/app.msi")


class TestRunCommand:
    """Tests for run_command against a real child process."""

    def test_exit_code_and_output_logged(self, tmp_path, logger):
        log_file = tmp_path / "step.log"
        cmd = [sys.executable, "-c", "import sys; print('hello'); sys.exit(7)"]

        assert run_command(cmd, log_file, logger) == 7
        assert "hello" in log_file.read_text()

    def test_missing_executable(self, tmp_path, logger):
        with pytest.raises(ExecutionError):
            run_command([str(tmp_path / "missing.exe")], None, logger)

    def test_timeout_kills_command(self, tmp_path, logger):
        log_file = tmp_path / "step.log"
        cmd = [sys.executable, "-c", "import time; time.sleep(30)"]

        start = time.monotonic()
        assert run_command(cmd, log_file, logger, timeout=1) == 124
        assert time.monotonic() - start < 10


class TestExecution:
    """Tests for execute_process and execute_msi."""

    def test_execute_process_returns_exit_code(self, make_ctx):
        ctx = make_ctx()
        toolkit = DeploymentToolkit(ctx)

        exit_code = toolkit.execute_process(
            Path(sys.executable), ["-c", "import sys; sys.exit(3)"], name="quick-exit")

        assert exit_code == 3
        assert (ctx.log_dir / f"{ctx.app_label}_quick-exit.log").exists()

    def test_execute_process_missing_file(self, make_ctx, tmp_path):
        toolkit = DeploymentToolkit(make_ctx())

        with pytest.raises(ExecutionError, match="File not found"):
            toolkit.execute_process(tmp_path / "nope.exe")

    def test_execute_msi_quiet_when_silent(self, make_ctx, runner):
        ctx = make_ctx(deploy_mode=DeployMode.SILENT)
        runner.exit_code = 1605

        exit_code = DeploymentToolkit(ctx).execute_msi(
            "uninstall", "{2F9E4D71-8B3C-4A65-B0D2-7C15E9A3F640}", name="remove-voices")

        assert exit_code == 1605
        cmd = runner.commands[0]
        assert cmd[:2] == ["msiexec.exe", "/x"]
        assert "/qn" in cmd
        assert cmd[-1].endswith("remove-voices_msi.log")

    def test_execute_msi_without_logging(self, make_ctx, runner):
        ctx = make_ctx(disable_logging=True)

        DeploymentToolkit(ctx).execute_msi("uninstall", "{2F9E4D71-8B3C-4A65-B0D2-7C15E9A3F640}")

        assert "/L*v" not in runner.commands[0]


class TestProcesses:
    """Tests for application closing and process waits."""

    def test_wait_for_process_exit(self, make_ctx, monkeypatch):
        seen = [["FusionSetupChild.exe"], ["FusionSetupChild.exe"], []]
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: seen.pop(0))
        monkeypatch.setattr(toolkit_module.time, "sleep", lambda seconds: None)

        assert DeploymentToolkit(make_ctx()).wait_for_process_exit("FusionSetupChild") is True
        assert seen == []

    def test_wait_for_process_exit_timeout(self, make_ctx, monkeypatch):
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: ["still here"])
        monkeypatch.setattr(toolkit_module.time, "sleep", lambda seconds: None)
        clock = iter(range(0, 1000, 5))
        monkeypatch.setattr(toolkit_module.time, "monotonic", lambda: next(clock))

        assert DeploymentToolkit(make_ctx()).wait_for_process_exit("hung", timeout=30) is False

    def test_silent_mode_closes_immediately(self, make_ctx, monkeypatch):
        closed = []
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: [FakeProc("jfw.exe")])
        monkeypatch.setattr(DeploymentToolkit, "close_processes",
                            lambda self, names: closed.append(list(names)))

        DeploymentToolkit(make_ctx()).show_installation_welcome(["jfw"], countdown=60)

        assert closed == [["jfw"]]

    def test_interactive_user_closes_before_countdown(self, make_ctx, monkeypatch):
        seen = [[FakeProc("jfw.exe")], [FakeProc("jfw.exe")], []]
        closed = []
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: seen.pop(0))
        monkeypatch.setattr(toolkit_module.time, "sleep", lambda seconds: None)
        monkeypatch.setattr(DeploymentToolkit, "close_processes",
                            lambda self, names: closed.append(list(names)))

        ctx = make_ctx(deploy_mode=DeployMode.INTERACTIVE)
        DeploymentToolkit(ctx).show_installation_welcome(["jfw"], countdown=60)

        assert closed == []

    def test_interactive_countdown_expires(self, make_ctx, monkeypatch):
        closed = []
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: [FakeProc("jfw.exe")])
        monkeypatch.setattr(toolkit_module.time, "sleep", lambda seconds: None)
        clock = itertools.count(0, 10)
        monkeypatch.setattr(toolkit_module.time, "monotonic", lambda: next(clock))
        monkeypatch.setattr(DeploymentToolkit, "close_processes",
                            lambda self, names: closed.append(list(names)))

        ctx = make_ctx(deploy_mode=DeployMode.INTERACTIVE)
        DeploymentToolkit(ctx).show_installation_welcome(["jfw"], countdown=60)

        assert closed == [["jfw"]]

    def test_access_denied_is_not_fatal(self, make_ctx, monkeypatch):
        proc = FakeProc("jfw.exe", denied=True)
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: [proc])
        monkeypatch.setattr(toolkit_module.psutil, "wait_procs",
                            lambda procs, timeout: ([], procs))

        DeploymentToolkit(make_ctx()).show_installation_welcome(["jfw"])

        assert proc.attempts == ["terminate", "kill"]

    def test_close_processes_ends_real_process(self, make_ctx, monkeypatch):
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        try:
            proc = psutil.Process(child.pid)
            proc.info = {"name": "python"}
            monkeypatch.setattr(toolkit_module, "find_processes", lambda names: [proc])

            DeploymentToolkit(make_ctx()).close_processes(["python"])

            assert child.wait(timeout=10) is not None
        finally:
            if child.poll() is None:
                child.kill()
                child.wait()

    def test_nothing_running(self, make_ctx, monkeypatch):
        monkeypatch.setattr(toolkit_module, "find_processes", lambda names: [])
        monkeypatch.setattr(DeploymentToolkit, "close_processes",
                            lambda self, names: pytest.fail("nothing to close"))

        DeploymentToolkit(make_ctx()).show_installation_welcome(["jfw"])

    def test_process_names_match_without_extension(self):
        assert toolkit_module._process_key("JFW.EXE") == toolkit_module._process_key("jfw")


class FakeProc:
    def __init__(self, name, denied=False):
        self.info = {"name": name}
        self.pid = 4242
        self.denied = denied
        self.attempts = []

    def _signal(self, action):
        self.attempts.append(action)
        if self.denied:
            raise psutil.AccessDenied(pid=self.pid)

    def terminate(self):
        self._signal("terminate")

    def kill(self):
        self._signal("kill")


class TestSystemChanges:
    """Tests for file removal, environment variables and prompts."""

    def test_remove_files(self, make_ctx, tmp_path):
        shortcut = tmp_path / "Fusion 2018.lnk"
        shortcut.write_text("")

        removed = DeploymentToolkit(make_ctx()).remove_files(
            [shortcut, tmp_path / "JAWS 2018.lnk"])

        assert removed == 1
        assert not shortcut.exists()

    def test_remove_files_skips_locked_file(self, make_ctx, tmp_path, monkeypatch):
        shortcut = tmp_path / "Fusion 2018.lnk"
        shortcut.write_text("")

        def locked(self, *args, **kwargs):
            raise PermissionError(13, "Access is denied", str(self))

        monkeypatch.setattr(Path, "unlink", locked)

        assert DeploymentToolkit(make_ctx()).remove_files([shortcut]) == 0
        assert shortcut.exists()

    def test_set_environment_variable(self, make_ctx, runner, monkeypatch):
        monkeypatch.delenv("FS_SUPPRESS_UPDATES", raising=False)

        DeploymentToolkit(make_ctx()).set_environment_variable("FS_SUPPRESS_UPDATES", "1")

        assert runner.commands == [["setx", "FS_SUPPRESS_UPDATES", "1", "/M"]]
        assert os.environ["FS_SUPPRESS_UPDATES"] == "1"

    def test_set_environment_variable_failure(self, make_ctx, runner):
        runner.exit_code = 1

        with pytest.raises(ExecutionError):
            DeploymentToolkit(make_ctx()).set_environment_variable("FS_SUPPRESS_UPDATES", "1")

    def test_restart_prompt_suppressed_when_silent(self, make_ctx, runner):
        DeploymentToolkit(make_ctx(deploy_mode=DeployMode.SILENT)).show_restart_prompt(600)
        assert runner.commands == []

    def test_restart_prompt_interactive(self, make_ctx, runner):
        DeploymentToolkit(make_ctx(deploy_mode=DeployMode.INTERACTIVE)).show_restart_prompt(600)
        assert runner.commands[0][:4] == ["shutdown.exe", "/r", "/t", "600"]


class TestExitScript:
    """Tests for restart pass-through on exit."""

    @pytest.mark.parametrize("code", [3010, 1641])
    def test_restart_codes_suppressed_by_default(self, make_ctx, code):
        assert DeploymentToolkit(make_ctx()).exit_script(code) == 0

    def test_restart_code_passed_through(self, make_ctx):
        ctx = make_ctx(allow_reboot_passthru=True)
        assert DeploymentToolkit(ctx).exit_script(3010) == 3010

    def test_restart_initiated_passed_through_as_success(self, make_ctx, monkeypatch):
        ctx = make_ctx(allow_reboot_passthru=True)
        errors = []
        monkeypatch.setattr(ctx.logger, "error", lambda msg, *args, **kwargs: errors.append(msg))

        assert DeploymentToolkit(ctx).exit_script(1641) == 1641
        assert errors == []

    def test_failure_code_unchanged(self, make_ctx):
        assert DeploymentToolkit(make_ctx()).exit_script(1603) == 1603
