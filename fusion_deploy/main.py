#!/usr/bin/env python3
"""
Fusion 2018 Deployment
----------------------
Silently installs or uninstalls Fusion 2018 (JAWS + ZoomText).
Flags follow the toolkit convention, e.g.:

    deploy-application -DeploymentType Uninstall -DeployMode Silent
"""

import argparse
import importlib
import sys
from pathlib import Path
from typing import List, Optional

from . import (
    EXIT_SUCCESS, EXIT_DEPLOYMENT_FAILED, EXIT_TOOLKIT_MISSING, EXIT_INTERRUPTED
)
from .config import (
    DEFAULT_PLAN_FILE, default_log_dir, load_yaml_file, path_variables, setup_logging
)
from .context import DeploymentRequest, DeploymentType, DeployMode, ExecutionContext
from .exceptions import ConfigurationError, ToolkitError
from .orchestrator import DeploymentOrchestrator
from .state import DeploymentState
from .validator import validate_plan


DEFAULT_TOOLKIT = "fusion_deploy.toolkit"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse and return command line arguments."""
    parser = argparse.ArgumentParser(
        description="Install or uninstall Fusion 2018",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Silent install
  deploy-application -DeploymentType Install -DeployMode Silent

  # Uninstall, passing a pending restart (3010) back to the caller
  deploy-application -DeploymentType Uninstall -AllowRebootPassThru

  # Check the plan and installer files only
  deploy-application --validate-only --files-dir D:/Fusion/Files
        """
    )

    parser.add_argument(
        "-DeploymentType", "--deployment-type",
        dest="deployment_type",
        type=DeploymentType.parse,
        default=DeploymentType.INSTALL,
        metavar="{Install,Uninstall}",
        help="Install or Uninstall (default: Install)"
    )
    parser.add_argument(
        "-DeployMode", "--deploy-mode",
        dest="deploy_mode",
        type=DeployMode.parse,
        default=DeployMode.INTERACTIVE,
        metavar="{Interactive,Silent,NonInteractive}",
        help="How much the user sees (default: Interactive)"
    )
    parser.add_argument(
        "-AllowRebootPassThru", "--allow-reboot-passthru",
        dest="allow_reboot_passthru",
        action="store_true",
        help="Return 3010 instead of 0 when a restart is required"
    )
    parser.add_argument(
        "-TerminalServerMode", "--terminal-server-mode",
        dest="terminal_server_mode",
        action="store_true",
        help="Switch a Remote Desktop host to install mode while deploying"
    )
    parser.add_argument(
        "-DisableLogging", "--disable-logging",
        dest="disable_logging",
        action="store_true",
        help="Do not write log files"
    )
    parser.add_argument(
        "--plan",
        type=Path,
        default=DEFAULT_PLAN_FILE,
        help="Deployment plan YAML (default: bundled Fusion 2018 plan)"
    )
    parser.add_argument(
        "--files-dir",
        type=Path,
        default=Path.cwd() / "Files",
        help="Directory holding the vendor installers (default: ./Files)"
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Log directory (default: %%SystemRoot%%\\Logs\\Software)"
    )
    parser.add_argument(
        "--toolkit",
        default=DEFAULT_TOOLKIT,
        help="Module providing the deployment toolkit"
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Only validate the plan, don't deploy"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    return parser.parse_args(argv)


def load_toolkit(module_name: str):
    """
    Import the toolkit module and return its ``Toolkit`` class.

    Raises:
        ToolkitError: If the module or its ``Toolkit`` class is missing
    """
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ToolkitError(f"Unable to load deployment toolkit '{module_name}': {e}")

    toolkit_cls = getattr(module, "Toolkit", None)
    if toolkit_cls is None:
        raise ToolkitError(f"Deployment toolkit '{module_name}' has no Toolkit class")
    return toolkit_cls


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    args = parse_arguments(argv)

    request = DeploymentRequest(
        deployment_type=args.deployment_type,
        deploy_mode=args.deploy_mode,
        allow_reboot_passthru=args.allow_reboot_passthru,
        terminal_server_mode=args.terminal_server_mode,
        disable_logging=args.disable_logging,
    )

    # Console only until the plan tells us what to call the log file
    logger = setup_logging(None, verbose=args.verbose, disable_logging=True)

    try:
        toolkit_cls = load_toolkit(args.toolkit)
    except ToolkitError as e:
        logger.error(f"❌ {e}")
        return EXIT_TOOLKIT_MISSING

    try:
        plan = load_yaml_file(args.plan, logger)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration Error: {e}")
        return EXIT_DEPLOYMENT_FAILED

    log_dir = None if args.disable_logging else (args.log_dir or default_log_dir())
    files_dir = args.files_dir.resolve()

    ctx = ExecutionContext(
        request=request,
        files_dir=files_dir,
        log_dir=log_dir,
        plan_file=args.plan,
        plan=plan,
        variables=path_variables(files_dir, log_dir),
        verbose=args.verbose,
    )

    try:
        logger = setup_logging(log_dir, ctx.log_name, args.verbose, args.disable_logging)
    except OSError as e:
        logger.error(f"❌ Cannot open log directory {log_dir}: {e}")
        return EXIT_DEPLOYMENT_FAILED
    ctx.logger = logger

    logger.info("=" * 60)
    logger.info(f"{ctx.metadata.get('vendor', '')} {ctx.metadata.get('name', '')} "
                f"{ctx.metadata.get('version', '')} Deployment Starting".strip())
    logger.info("=" * 60)
    logger.info(f"Deployment Type: {request.deployment_type.value}")
    logger.info(f"Deploy Mode: {request.deploy_mode.value}")
    logger.info(f"Plan: {args.plan}")
    logger.info(f"Files: {files_dir}")
    logger.info(f"Logs: {log_dir if log_dir else 'disabled'}")
    logger.info("=" * 60)

    toolkit = None
    try:
        toolkit = toolkit_cls(ctx)

        if not validate_plan(args.plan, plan, ctx):
            toolkit.show_error_dialog(f"Deployment plan {args.plan} is not valid")
            return EXIT_DEPLOYMENT_FAILED

        if args.validate_only:
            logger.info("\n✅ Validation complete. Exiting (--validate-only mode)")
            return EXIT_SUCCESS

        state = DeploymentState(ctx.journal_file, logger)
        exit_code = DeploymentOrchestrator(ctx, toolkit, state).run(request)
        return toolkit.exit_script(exit_code)

    except KeyboardInterrupt:
        logger.warning("\n\n⚠️  Interrupted by user")
        return EXIT_INTERRUPTED

    except Exception as e:
        logger.error(f"\n❌ Unexpected Error: {e}", exc_info=args.verbose)
        if toolkit is not None:
            toolkit.show_error_dialog(f"Deployment failed: {e}")
        return EXIT_DEPLOYMENT_FAILED


if __name__ == "__main__":
    sys.exit(main())
