"""
Default deployment toolkit.

The orchestrator only talks to the toolkit through the methods below, so a
site can point ``--toolkit`` at its own module exposing a ``Toolkit`` class
with the same methods. This implementation is headless: prompts and dialogs
become log messages.
"""

import os
import re
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import psutil

from . import EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED
from .context import ExecutionContext
from .exceptions import ExecutionError
from .executor import build_msi_command, build_process_command, run_command


def _process_key(name: str) -> str:
    """Normalize a process name: case-insensitive, '.exe' optional."""
    name = name.lower()
    return name[:-4] if name.endswith(".exe") else name


def _safe_name(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", text).strip("_") or "step"


def find_processes(names: Iterable[str]) -> List[psutil.Process]:
    """Return running processes whose name matches one of ``names``."""
    wanted = {_process_key(n) for n in names}
    found = []
    for proc in psutil.process_iter(["name"]):
        proc_name = proc.info.get("name") or ""
        if _process_key(proc_name) in wanted:
            found.append(proc)
    return found


class DeploymentToolkit:
    """
    Process, installer and prompt primitives used by the orchestrator.

    Example:
        >>> toolkit = DeploymentToolkit(ctx)
        >>> toolkit.show_installation_welcome(["jfw", "zoomtext"], countdown=60)
        >>> exit_code = toolkit.execute_msi("uninstall", "{8A3F...}")
    """

    poll_interval = 2.0
    terminate_timeout = 10

    def __init__(self, ctx: ExecutionContext):
        self.ctx = ctx
        self.logger = ctx.logger

    @property
    def interactive(self) -> bool:
        return self.ctx.request.is_interactive

    def _step_log(self, name: str) -> Optional[Path]:
        if self.ctx.request.disable_logging or self.ctx.log_dir is None:
            return None
        return self.ctx.log_dir / f"{self.ctx.app_label}_{_safe_name(name)}.log"

    # Application closing

    def show_installation_welcome(self, close_apps: Sequence[str],
                                  countdown: Optional[int] = None) -> None:
        """
        Close applications that would lock files during the deployment.

        Silent and NonInteractive runs close them straight away. Interactive
        runs give the user ``countdown`` seconds to close them first, or
        block until the user has closed them when there is no countdown.
        """
        if not close_apps:
            return

        running = find_processes(close_apps)
        if not running:
            self.logger.info("No conflicting applications running")
            return

        names = sorted({p.info.get("name") or str(p.pid) for p in running})
        self.logger.warning(f"Applications to close: {', '.join(names)}")

        if self.interactive:
            if countdown is None:
                self.logger.warning("Waiting for the user to close the applications above")
                while find_processes(close_apps):
                    time.sleep(self.poll_interval)
                return

            self.logger.warning(f"Applications will be closed in {countdown} seconds")
            deadline = time.monotonic() + countdown
            while time.monotonic() < deadline:
                if not find_processes(close_apps):
                    self.logger.info("Applications closed by the user")
                    return
                time.sleep(min(self.poll_interval, max(deadline - time.monotonic(), 0)))

        self.close_processes(close_apps)

    def close_processes(self, names: Iterable[str]) -> None:
        """Terminate matching processes, killing any that do not exit in time."""
        procs = find_processes(names)
        for proc in procs:
            try:
                self.logger.info(f"Closing {proc.info.get('name')} (pid {proc.pid})")
                proc.terminate()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                self.logger.warning(f"Access denied closing {proc.info.get('name')} (pid {proc.pid})")

        _, alive = psutil.wait_procs(procs, timeout=self.terminate_timeout)
        for proc in alive:
            try:
                self.logger.warning(f"Killing {proc.info.get('name')} (pid {proc.pid})")
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                self.logger.warning(f"Access denied killing {proc.info.get('name')} (pid {proc.pid})")

    def wait_for_process_exit(self, name: str, timeout: Optional[int] = None) -> bool:
        """
        Block until no process called ``name`` is running.

        Installers that hand off to a child process and exit early are
        only finished once the child is gone.

        Returns:
            True once the process is gone, False if ``timeout`` ran out
        """
        self.logger.info(f"Waiting for {name} to exit")
        deadline = time.monotonic() + timeout if timeout else None

        while find_processes([name]):
            if deadline and time.monotonic() >= deadline:
                self.logger.warning(f"{name} still running after {timeout} seconds")
                return False
            time.sleep(self.poll_interval)

        self.logger.info(f"{name} is no longer running")
        return True

    # Installer execution

    def execute_process(self, path: Path, args: Sequence[str] = (),
                        name: Optional[str] = None, timeout: Optional[int] = None) -> int:
        """
        Run an executable and wait for it.

        Raises:
            ExecutionError: If the executable does not exist
        """
        path = Path(path)
        if not path.is_file():
            raise ExecutionError(f"File not found: {path}")

        command = build_process_command(path, args)
        log_file = self._step_log(name or path.stem)
        exit_code = run_command(command, log_file, self.logger, timeout, cwd=path.parent)
        self.logger.info(f"{path.name} exited with code {exit_code}")
        return exit_code

    def execute_msi(self, action: str, path: str, transform: Optional[str] = None,
                    patch: Optional[str] = None, args: Sequence[str] = (),
                    name: Optional[str] = None, timeout: Optional[int] = None) -> int:
        """Run msiexec against a package or product code and wait for it."""
        log_name = name or f"{action}_{Path(str(path)).stem}"
        msi_log = self._step_log(f"{log_name}_msi")
        command = build_msi_command(
            action, path,
            interactive=self.interactive,
            transform=transform,
            patch=patch,
            args=args,
            log_file=msi_log,
        )
        exit_code = run_command(command, self._step_log(log_name), self.logger, timeout)
        self.logger.info(f"msiexec {action} {path} exited with code {exit_code}")
        return exit_code

    # System changes

    def remove_files(self, paths: Iterable[Path]) -> int:
        """
        Delete files that exist; returns how many were removed.

        Files that cannot be deleted are logged and left in place.
        """
        removed = 0
        for path in paths:
            path = Path(path)
            if path.is_file():
                try:
                    path.unlink()
                except OSError as e:
                    self.logger.warning(f"Could not remove {path}: {e}")
                    continue
                self.logger.info(f"Removed {path}")
                removed += 1
            else:
                self.logger.debug(f"Not present: {path}")
        return removed

    def set_environment_variable(self, name: str, value: str) -> None:
        """
        Set a persistent machine-scoped environment variable.

        Raises:
            ExecutionError: If setx reports a failure
        """
        exit_code = run_command(["setx", name, str(value), "/M"], None, self.logger)
        if exit_code != 0:
            raise ExecutionError(f"setx {name} failed with exit code {exit_code}", exit_code)
        os.environ[name] = str(value)
        self.logger.info(f"Set machine environment variable {name}={value}")

    def enable_terminal_server_install_mode(self) -> None:
        self.logger.info("Switching terminal server to install mode")
        run_command(["change.exe", "user", "/install"], None, self.logger)

    def disable_terminal_server_install_mode(self) -> None:
        self.logger.info("Switching terminal server back to execute mode")
        run_command(["change.exe", "user", "/execute"], None, self.logger)

    # Prompts and exit

    def show_installation_progress(self, message: str) -> None:
        self.logger.info(f"[{self.ctx.request.deploy_mode.value}] {message}")

    def show_restart_prompt(self, countdown: int = 600) -> None:
        """
        Schedule a restart with a countdown the user can see.

        Silent and NonInteractive deployments never restart the machine.
        """
        if not self.interactive:
            self.logger.info(
                f"Restart prompt suppressed in {self.ctx.request.deploy_mode.value} mode"
            )
            return

        self.logger.warning(f"System restart scheduled in {countdown} seconds")
        exit_code = run_command(
            ["shutdown.exe", "/r", "/t", str(countdown),
             "/c", f"{self.ctx.metadata.get('name', 'Software')} requires a restart"],
            None, self.logger,
        )
        if exit_code != 0:
            self.logger.warning(f"Could not schedule restart (exit code {exit_code})")

    def show_error_dialog(self, message: str) -> None:
        self.logger.error(message)

    def exit_script(self, exit_code: int) -> int:
        """Log the outcome and apply restart pass-through."""
        final = exit_code
        if not self.ctx.request.allow_reboot_passthru and exit_code in (
                EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED):
            self.logger.info(f"Restart code {exit_code} suppressed (no -AllowRebootPassThru)")
            final = 0

        self.logger.info("=" * 60)
        if final in (0, EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED):
            self.logger.info(f"✅ {self.ctx.request.deployment_type.value} completed "
                             f"with exit code {final}")
        else:
            self.logger.error(f"❌ {self.ctx.request.deployment_type.value} completed "
                              f"with exit code {final}")
        self.logger.info("=" * 60)
        return final


# Name the loader looks up in a toolkit module
Toolkit = DeploymentToolkit
