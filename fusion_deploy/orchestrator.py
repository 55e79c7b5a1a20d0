"""
Deployment orchestration.
Runs the pre/main/post phases of an install or uninstall through the toolkit.
"""

from pathlib import Path
from typing import Dict, Any, List

from . import EXIT_SUCCESS, EXIT_DEPLOYMENT_FAILED, EXIT_REBOOT_REQUIRED
from .config import replace_placeholders
from .context import DeploymentRequest, DeploymentType, ExecutionContext
from .exceptions import ExecutionError
from .state import DeploymentState


class DeploymentOrchestrator:
    """
    Drives one deployment from application closing to the restart prompt.

    Example:
        >>> orchestrator = DeploymentOrchestrator(ctx, DeploymentToolkit(ctx))
        >>> exit_code = orchestrator.run(ctx.request)
    """

    def __init__(self, ctx: ExecutionContext, toolkit, state: DeploymentState = None):
        """
        Initialize the orchestrator.

        Args:
            ctx: Execution context holding the loaded plan
            toolkit: Object providing the deployment primitives
            state: Exit code accumulator and step journal
        """
        self.ctx = ctx
        self.toolkit = toolkit
        self.logger = ctx.logger
        self.state = state or DeploymentState(ctx.journal_file, ctx.logger)

    def run(self, request: DeploymentRequest) -> int:
        """
        Execute the deployment and return the accumulated exit code.

        Installer failures are recorded and the run carries on. Anything
        unexpected stops the run with 60001.
        """
        self.ctx.request = request
        self.state.initialize(self.ctx.app_label, request.deployment_type.value,
                              request.deploy_mode.value)

        try:
            if request.terminal_server_mode:
                self.toolkit.enable_terminal_server_install_mode()
            try:
                if request.deployment_type == DeploymentType.INSTALL:
                    self._install()
                else:
                    self._uninstall()
            finally:
                if request.terminal_server_mode:
                    self.toolkit.disable_terminal_server_install_mode()

        except Exception as e:
            self.logger.error(f"\n❌ Deployment failed: {e}", exc_info=True)
            self.toolkit.show_error_dialog(
                f"{self.ctx.metadata.get('name', 'The application')} "
                f"{request.deployment_type.value.lower()} failed: {e}"
            )
            return EXIT_DEPLOYMENT_FAILED

        return self.state.exit_code

    def _install(self) -> None:
        section = self.ctx.section
        welcome = section.get("welcome") or {}

        # Pre-Installation
        self.toolkit.show_installation_welcome(
            welcome.get("close_apps") or [], welcome.get("countdown"))
        self.toolkit.show_installation_progress("Removing previous versions")
        self._run_phase("Pre-Installation", section.get("pre") or [])

        # Installation
        self.toolkit.show_installation_progress("Installation in progress")
        self._run_phase("Installation", section.get("main") or [])

        # Post-Installation
        self._run_phase("Post-Installation", section.get("post") or [])
        self._restart_prompt(section)

    def _uninstall(self) -> None:
        section = self.ctx.section
        welcome = section.get("welcome") or {}

        # Pre-Uninstallation
        self.toolkit.show_installation_welcome(
            welcome.get("close_apps") or [], welcome.get("countdown"))
        self._run_phase("Pre-Uninstallation", section.get("pre") or [])

        # Uninstallation
        self.toolkit.show_installation_progress("Uninstallation in progress")
        self._run_phase("Uninstallation", section.get("main") or [])

        # Post-Uninstallation
        self._run_phase("Post-Uninstallation", section.get("post") or [])
        self._restart_prompt(section)

    def _restart_prompt(self, section: Dict[str, Any]) -> None:
        # false/absent: no prompt, true: default countdown, int or mapping: explicit
        prompt = section.get("restart_prompt")
        if prompt is False or prompt is None:
            return
        if isinstance(prompt, dict):
            countdown = prompt.get("countdown", 600)
        elif isinstance(prompt, int) and not isinstance(prompt, bool):
            countdown = prompt
        else:
            countdown = 600
        self.toolkit.show_restart_prompt(countdown)

    def _run_phase(self, phase: str, steps: List[Dict[str, Any]]) -> None:
        if not steps:
            return

        self.logger.info("\n" + "=" * 60)
        self.logger.info(f"[{phase}] {len(steps)} step(s)")
        self.logger.info("=" * 60)

        for index, step in enumerate(steps, start=1):
            self.execute_step(step, phase, index, len(steps))

    def _render(self, value: Any) -> str:
        return replace_placeholders(str(value), self.ctx.variables)

    def execute_step(self, step: Dict[str, Any], phase: str, index: int, total: int) -> None:
        """
        Execute a single plan step.

        Args:
            step: Step configuration dictionary
            phase: Phase name, for log output
            index: Current step number (1-based)
            total: Total number of steps in the phase
        """
        step_id = str(step.get("id", f"{phase}_{index}"))
        description = step.get("description") or step_id
        kind = step.get("kind", "")

        # Conditional removal of previous products
        only_if = step.get("only_if_exists")
        if only_if:
            marker = Path(self._render(only_if))
            if not marker.exists():
                self.logger.info(f"[{step_id}] SKIPPING: {marker} not present")
                self.state.mark_skipped(step_id, f"not present: {marker}")
                return

        self.logger.info("")
        self.logger.info(f"STEP {index}/{total}: {description}")
        self.logger.info("-" * 60)
        self.state.mark_running(step_id, kind=kind, description=description, phase=phase)

        if kind == "process":
            exit_code = self.toolkit.execute_process(
                Path(self._render(step["path"])),
                [self._render(arg) for arg in step.get("args") or []],
                name=step_id,
                timeout=step.get("timeout"),
            )
            wait_for = step.get("wait_for_process")
            if wait_for:
                self.toolkit.wait_for_process_exit(wait_for)
            self._record(step_id, exit_code, step)

        elif kind == "msi":
            transform = step.get("transform")
            patch = step.get("patch")
            exit_code = self.toolkit.execute_msi(
                step["action"],
                self._render(step["path"]),
                transform=self._render(transform) if transform else None,
                patch=self._render(patch) if patch else None,
                args=[self._render(arg) for arg in step.get("args") or []],
                name=step_id,
                timeout=step.get("timeout"),
            )
            self._record(step_id, exit_code, step)

        elif kind == "remove_files":
            self.toolkit.remove_files([Path(self._render(p)) for p in step["paths"]])
            self.state.mark_success(step_id)
            self.logger.info("✅ SUCCESS")

        elif kind == "environment":
            self.toolkit.set_environment_variable(step["name"], self._render(step["value"]))
            self.state.mark_success(step_id)
            self.logger.info("✅ SUCCESS")

        else:
            raise ExecutionError(f"Unknown step kind: {kind}")

    def _record(self, step_id: str, exit_code: int, step: Dict[str, Any]) -> None:
        ignore = step.get("ignore_exit_codes") or []
        effective = self.state.record(step_id, exit_code, ignore)

        if effective == EXIT_SUCCESS:
            if exit_code != EXIT_SUCCESS:
                self.logger.info(f"✅ SUCCESS (exit code {exit_code} ignored)")
            else:
                self.logger.info("✅ SUCCESS")
        elif effective == EXIT_REBOOT_REQUIRED:
            self.logger.info("✅ SUCCESS (restart required)")
        else:
            self.logger.error("❌ FAILED")
            self.logger.error(f"Exit code: {exit_code}")
            self.logger.warning("⚠️  Continuing despite failure")
