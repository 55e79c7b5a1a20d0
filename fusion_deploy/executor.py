"""
Command building and execution.
"""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from .exceptions import ExecutionError


MSIEXEC = "msiexec.exe"

# msiexec switch per action
MSI_ACTIONS = {
    "install": "/i",
    "uninstall": "/x",
    "repair": "/fomus",
    "patch": "/p",
}


def build_process_command(path: Path, args: Sequence[str] = ()) -> List[str]:
    """
    Build the command for an executable installer or uninstaller.

    Example:
        >>> build_process_command(Path("C:/Files/F2018.exe"), ["/Type", "silent"])
        ['C:/Files/F2018.exe', '/Type', 'silent']
    """
    return [str(path)] + [str(arg) for arg in args]


def build_msi_command(
    action: str,
    target: str,
    interactive: bool = False,
    transform: Optional[str] = None,
    patch: Optional[str] = None,
    args: Sequence[str] = (),
    log_file: Optional[Path] = None
) -> List[str]:
    """
    Build an msiexec command line.

    Args:
        action: install, uninstall, repair or patch
        target: Path to the .msi/.msp or a product code GUID
        interactive: Show the basic progress UI instead of running quietly
        transform: Optional .mst applied on install
        patch: Optional .msp applied on install
        args: Additional public properties or switches
        log_file: Verbose MSI log destination

    Returns:
        List of command arguments for subprocess

    Raises:
        ExecutionError: If the action is unknown

    Example:
        >>> build_msi_command("uninstall", "{AB12...}")
        ['msiexec.exe', '/x', '{AB12...}', 'REBOOT=ReallySuppress', '/qn']
    """
    switch = MSI_ACTIONS.get(str(action).lower())
    if not switch:
        raise ExecutionError(f"Unknown MSI action: {action}")

    cmd = [MSIEXEC, switch, str(target)]

    if transform:
        cmd.append(f"TRANSFORMS={transform}")
    if patch:
        cmd.append(f"PATCH={patch}")

    cmd.append("REBOOT=ReallySuppress")
    cmd.extend(str(arg) for arg in args)

    # Interactive installs show a progress bar without a cancel button
    cmd.append("/qb-!" if interactive else "/qn")

    if log_file:
        cmd.extend(["/L*v", str(log_file)])

    return cmd


def run_command(
    command: List[str],
    log_file: Optional[Path],
    logger: logging.Logger,
    timeout: Optional[int] = None,
    cwd: Optional[Path] = None
) -> int:
    """
    Run a command, block until it exits and save output to a log file.

    Args:
        command: Command and arguments to execute
        log_file: Path to write command output, None to only log it
        logger: Logger for progress messages
        timeout: Optional timeout in seconds
        cwd: Optional working directory

    Returns:
        Exit code (0 = success)

    Raises:
        ExecutionError: If the command cannot be started

    Example:
        >>> exit_code = run_command(
        ...     ['msiexec.exe', '/x', '{AB12...}', '/qn'],
        ...     Path('C:/Windows/Logs/Software/remove.log'),
        ...     logger,
        ...     timeout=3600
        ... )
    """
    logger.info(f"Running: {' '.join(command)}")

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,  # Line buffered
            cwd=str(cwd) if cwd else None,
            env=os.environ.copy()
        )
    except OSError as e:
        raise ExecutionError(f"Failed to run {command[0]}: {e}")

    log = open(log_file, 'w', encoding="utf-8") if log_file else None

    # Output is pumped on a thread so the timeout applies while the child runs
    reader = threading.Thread(
        target=_pump_output, args=(process.stdout, log, logger), daemon=True
    )
    reader.start()

    try:
        exit_code = process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout} seconds")
        process.kill()
        process.wait()
        exit_code = 124  # Standard timeout exit code

    # A grandchild can keep the pipe open after the child is gone
    reader.join(timeout=5)
    if not reader.is_alive():
        process.stdout.close()
        if log:
            log.close()

    return exit_code


def _pump_output(stream, log, logger: logging.Logger) -> None:
    """Copy child output into the step log line by line."""
    for line in stream:
        logger.debug(line.rstrip())
        if log:
            log.write(line)
            log.flush()
