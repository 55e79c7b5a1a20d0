"""
Exit code accumulation and the step journal for one deployment run.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Iterable, Optional

from . import EXIT_SUCCESS, EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED


class DeploymentState:
    """
    Tracks the exit code of a deployment and which steps ran.

    Every installer result goes through ``record``. A non-zero result
    replaces the current exit code unless a restart is already pending
    (3010): reboot-required wins over any later failure. A zero result
    never replaces a recorded failure.

    Example:
        >>> state = DeploymentState(Path("C:/Windows/Logs/Software/Fusion_Install.json"))
        >>> state.mark_running("install-fusion", kind="process")
        >>> state.record("install-fusion", 3010)
        >>> state.record("remove-jaws", 1603)
        >>> state.exit_code
        3010
    """

    def __init__(self, journal_file: Optional[Path] = None, logger: logging.Logger = None):
        """
        Initialize the deployment state.

        Args:
            journal_file: Where to persist the journal, None to keep it in memory
            logger: Optional logger for messages
        """
        self.journal_file = journal_file
        self.logger = logger or logging.getLogger(__name__)
        self.exit_code = EXIT_SUCCESS
        self.state: Dict[str, Any] = {"exit_code": EXIT_SUCCESS, "steps": {}}

    def initialize(self, application: str, deployment_type: str, deploy_mode: str) -> None:
        """Record what is being deployed."""
        self.state["application"] = application
        self.state["deployment_type"] = deployment_type
        self.state["deploy_mode"] = deploy_mode
        self.save()

    def save(self) -> None:
        """Save the journal to disk, if there is a journal file."""
        if self.journal_file is None:
            return
        self.journal_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.journal_file, 'w', encoding="utf-8") as f:
                json.dump(self.state, f, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to save step journal: {e}")

    def record(self, step_id: str, exit_code: int,
               ignore_exit_codes: Iterable[int] = ()) -> int:
        """
        Record an installer result and update the accumulated exit code.

        Args:
            step_id: Step identifier
            exit_code: Exit code reported by the installer
            ignore_exit_codes: Codes treated as success for this step

        Returns:
            The effective exit code of the step
        """
        effective = EXIT_SUCCESS if exit_code in set(ignore_exit_codes) else exit_code

        if effective != EXIT_SUCCESS and self.exit_code != EXIT_REBOOT_REQUIRED:
            self.exit_code = effective

        step = self.state["steps"].setdefault(step_id, {})
        step["exit_code"] = exit_code
        if effective in (EXIT_SUCCESS, EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED):
            step["status"] = "ok"
        else:
            step["status"] = "failed"
        if effective != exit_code:
            step["ignored"] = True

        self.state["exit_code"] = self.exit_code
        self.save()
        return effective

    def mark_running(self, step_id: str, **kwargs) -> None:
        """
        Mark a step as currently running.

        Args:
            step_id: Step identifier
            **kwargs: Additional metadata (log path, description, etc.)
        """
        self.state["steps"][step_id] = {"status": "running", **kwargs}
        self.save()

    def mark_success(self, step_id: str) -> None:
        """Mark a step without an exit code (file removal, env var) as done."""
        self.state["steps"].setdefault(step_id, {})["status"] = "ok"
        self.save()

    def mark_skipped(self, step_id: str, reason: str = "") -> None:
        """
        Mark a step as skipped.

        Args:
            step_id: Step identifier
            reason: Optional reason for skipping
        """
        self.state["steps"][step_id] = {"status": "skipped"}
        if reason:
            self.state["steps"][step_id]["reason"] = reason
        self.save()

    def get_step_status(self, step_id: str) -> Optional[str]:
        """
        Get the status of a step.

        Returns:
            Status string (ok/failed/running/skipped) or None
        """
        return self.state.get("steps", {}).get(step_id, {}).get("status")

