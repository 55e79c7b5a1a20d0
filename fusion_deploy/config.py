"""
Configuration and logging management.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Dict, Any, Optional
import yaml

from .exceptions import ConfigurationError


LOGGER_NAME = "fusion_deploy"

# Packaged deployment plans
PLANS_DIR = Path(__file__).parent / "plans"
DEFAULT_PLAN_FILE = PLANS_DIR / "fusion2018.yml"


def default_log_dir() -> Path:
    """Toolkit-style log location: %SystemRoot%\\Logs\\Software."""
    return Path(os.environ.get("SystemRoot", r"C:\Windows")) / "Logs" / "Software"


def setup_logging(log_dir: Optional[Path], log_name: str = "deployment.log",
                  verbose: bool = False, disable_logging: bool = False) -> logging.Logger:
    """
    Setup logging to both file and console with proper formatting.

    Args:
        log_dir: Directory for the deployment log file
        log_name: File name of the deployment log
        verbose: Enable debug-level logging
        disable_logging: Only log to the console, never to disk

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logging(Path("C:/Windows/Logs/Software"), "Fusion_Install.log")
        >>> logger.info("Starting deployment")
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # A second run in the same interpreter gets fresh handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler - simple format
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)

    if not disable_logging and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        # File handler with detailed info
        file_handler = logging.FileHandler(log_dir / log_name, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def load_yaml_file(file_path: Path, logger: logging.Logger = None) -> Dict[str, Any]:
    """
    Load a YAML file and return its contents.

    Args:
        file_path: Path to YAML file
        logger: Optional logger for error messages

    Returns:
        Parsed YAML as dictionary

    Raises:
        ConfigurationError: If file cannot be read or parsed

    Example:
        >>> plan = load_yaml_file(Path("fusion2018.yml"))
        >>> print(plan['metadata']['name'])
    """
    try:
        with open(file_path, 'r', encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {file_path}: {e}"
        if logger:
            logger.error(msg)
        raise ConfigurationError(msg)
    except FileNotFoundError:
        msg = f"File not found: {file_path}"
        if logger:
            logger.error(msg)
        raise ConfigurationError(msg)
    except OSError as e:
        msg = f"Cannot read {file_path}: {e}"
        if logger:
            logger.error(msg)
        raise ConfigurationError(msg)

    if not isinstance(data, dict):
        msg = f"Expected a mapping at the top of {file_path}"
        if logger:
            logger.error(msg)
        raise ConfigurationError(msg)

    return data


def path_variables(files_dir: Path, log_dir: Optional[Path]) -> Dict[str, str]:
    """
    Build the placeholder table used when rendering plan strings.

    Windows folders come from the environment so the same plan renders
    correctly on 32-bit and 64-bit hosts.
    """
    system_drive = os.environ.get("SystemDrive", "C:")
    program_files = os.environ.get("ProgramFiles", rf"{system_drive}\Program Files")

    return {
        "dirFiles": str(files_dir),
        "logDir": str(log_dir) if log_dir else "",
        "ProgramFiles": program_files,
        "ProgramFilesX86": os.environ.get("ProgramFiles(x86)", program_files),
        "ProgramData": os.environ.get("ProgramData", rf"{system_drive}\ProgramData"),
        "Public": os.environ.get("PUBLIC", rf"{system_drive}\Users\Public"),
        "SystemRoot": os.environ.get("SystemRoot", rf"{system_drive}\Windows"),
    }


def replace_placeholders(text: str, variables: Dict[str, Any]) -> str:
    """
    Replace placeholders in text with actual values.

    Supports {dirFiles}, {ProgramFiles}, {ProgramFilesX86}, {ProgramData},
    {Public}, {SystemRoot}, {logDir} and any other key in ``variables``.
    Product codes such as ``{1B7C4F5E-...}`` are left alone because they
    never match a variable name.

    Args:
        text: Text containing placeholders
        variables: Dictionary of variables to replace

    Returns:
        Text with placeholders replaced

    Example:
        >>> replace_placeholders("{dirFiles}/setup.exe", {"dirFiles": "/media/Files"})
        '/media/Files/setup.exe'
    """
    result = str(text)
    for key, value in variables.items():
        if isinstance(value, (str, int, float, bool)):
            result = result.replace(f"{{{key}}}", str(value))

    return result
