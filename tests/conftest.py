"""Pytest configuration and fixtures."""

import logging

import pytest

from fusion_deploy.config import DEFAULT_PLAN_FILE, load_yaml_file, path_variables
from fusion_deploy.context import (
    DeploymentRequest, DeploymentType, DeployMode, ExecutionContext
)
from fusion_deploy.exceptions import ExecutionError

INSTALLER_NAME = "F2018.1811.7.400-enu-x64.exe"


class FakeToolkit:
    """Records every toolkit call instead of touching the machine."""

    exit_codes = {}

    def __init__(self, ctx=None, exit_codes=None, fail_on=None):
        self.ctx = ctx
        self.calls = []
        self.exit_codes = dict(exit_codes if exit_codes is not None else self.exit_codes)
        self.fail_on = fail_on

    def _result(self, name):
        if name == self.fail_on:
            raise ExecutionError(f"{name} blew up")
        return self.exit_codes.get(name, 0)

    def show_installation_welcome(self, close_apps, countdown=None):
        self.calls.append(("welcome", tuple(close_apps), countdown))

    def show_installation_progress(self, message):
        self.calls.append(("progress", message))

    def execute_process(self, path, args=(), name=None, timeout=None):
        self.calls.append(("process", name, str(path), tuple(args)))
        return self._result(name)

    def execute_msi(self, action, path, transform=None, patch=None, args=(),
                    name=None, timeout=None):
        self.calls.append(("msi", name, action, path))
        return self._result(name)

    def wait_for_process_exit(self, name, timeout=None):
        self.calls.append(("wait", name))
        return True

    def remove_files(self, paths):
        self.calls.append(("remove_files", tuple(str(p) for p in paths)))
        return 0

    def set_environment_variable(self, name, value):
        self.calls.append(("environment", name, value))

    def enable_terminal_server_install_mode(self):
        self.calls.append(("tsm", "install"))

    def disable_terminal_server_install_mode(self):
        self.calls.append(("tsm", "execute"))

    def show_restart_prompt(self, countdown=600):
        self.calls.append(("restart", countdown))

    def show_error_dialog(self, message):
        self.calls.append(("error", message))

    def exit_script(self, exit_code):
        self.calls.append(("exit", exit_code))
        if not self.ctx.request.allow_reboot_passthru and exit_code in (3010, 1641):
            return 0
        return exit_code

    def names(self, kind):
        """Step names of the recorded calls of one kind, in order."""
        return [call[1] for call in self.calls if call[0] == kind]


@pytest.fixture
def logger():
    return logging.getLogger("fusion_deploy.tests")


@pytest.fixture
def plan():
    """The bundled Fusion 2018 plan."""
    return load_yaml_file(DEFAULT_PLAN_FILE)


@pytest.fixture
def files_dir(tmp_path):
    """Package Files directory holding a placeholder installer."""
    files = tmp_path / "Files"
    files.mkdir()
    (files / INSTALLER_NAME).write_bytes(b"MZ")
    return files


@pytest.fixture
def make_ctx(tmp_path, plan, files_dir, logger):
    """Factory for an execution context around the bundled plan."""

    def _make(deployment_type=DeploymentType.INSTALL, deploy_mode=DeployMode.SILENT,
              plan_data=None, **request_kwargs):
        request = DeploymentRequest(
            deployment_type=deployment_type,
            deploy_mode=deploy_mode,
            **request_kwargs
        )
        log_dir = tmp_path / "Logs"
        variables = path_variables(files_dir, log_dir)
        # Keep rendered machine paths inside the temp directory
        for key in ("ProgramFiles", "ProgramFilesX86", "ProgramData", "Public"):
            variables[key] = str(tmp_path / key)

        return ExecutionContext(
            request=request,
            files_dir=files_dir,
            log_dir=log_dir,
            plan_file=DEFAULT_PLAN_FILE,
            plan=plan if plan_data is None else plan_data,
            variables=variables,
            logger=logger,
        )

    return _make


@pytest.fixture
def fake_toolkit_cls():
    return FakeToolkit
