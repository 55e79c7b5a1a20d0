"""
Deployment request and the execution context shared by all modules.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional


class _CaseInsensitiveEnum(str, Enum):
    """Enum whose values parse the way PowerShell validates a set."""

    @classmethod
    def parse(cls, value: str):
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"'{value}' is not one of: {choices}")

    def __str__(self) -> str:
        return self.value


class DeploymentType(_CaseInsensitiveEnum):
    INSTALL = "Install"
    UNINSTALL = "Uninstall"

    @property
    def section(self) -> str:
        """Name of the plan section holding this type's steps."""
        return self.value.lower()


class DeployMode(_CaseInsensitiveEnum):
    INTERACTIVE = "Interactive"
    SILENT = "Silent"
    NON_INTERACTIVE = "NonInteractive"


@dataclass(frozen=True)
class DeploymentRequest:
    """
    What to deploy and how, parsed once from the command line.
    """
    deployment_type: DeploymentType = DeploymentType.INSTALL
    deploy_mode: DeployMode = DeployMode.INTERACTIVE
    allow_reboot_passthru: bool = False
    terminal_server_mode: bool = False
    disable_logging: bool = False

    @property
    def is_interactive(self) -> bool:
        return self.deploy_mode == DeployMode.INTERACTIVE


@dataclass
class ExecutionContext:
    """
    Shared context for the entire deployment execution.
    Reduces parameter passing and centralizes configuration.
    """
    request: DeploymentRequest = None

    # Directory paths
    files_dir: Path = None
    log_dir: Optional[Path] = None
    plan_file: Path = None

    # Plan data
    plan: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, str] = field(default_factory=dict)

    # Runtime
    logger: logging.Logger = None
    verbose: bool = False

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.plan.get("metadata") or {}

    @property
    def app_label(self) -> str:
        """Vendor_Name_Version, used to name log and journal files."""
        parts = [
            self.metadata.get("vendor", ""),
            self.metadata.get("name", "Application"),
            str(self.metadata.get("version", "")),
        ]
        return "_".join(p.replace(" ", "") for p in parts if p)

    @property
    def log_name(self) -> str:
        return f"{self.app_label}_{self.request.deployment_type.value}.log"

    @property
    def journal_file(self) -> Optional[Path]:
        """Path to the step journal, or None when nothing goes to disk."""
        if self.request.disable_logging or self.log_dir is None:
            return None
        return self.log_dir / f"{self.app_label}_{self.request.deployment_type.value}.json"

    @property
    def section(self) -> Dict[str, Any]:
        """Plan section for the requested deployment type."""
        return self.plan.get(self.request.deployment_type.section) or {}

    def __post_init__(self):
        """Validate required fields after initialization."""
        if self.request is None:
            raise ValueError("request is required")
        if self.files_dir is None:
            raise ValueError("files_dir is required")
        if self.logger is None:
            self.logger = logging.getLogger("fusion_deploy")
