"""
Deployment plan validation.
"""

from pathlib import Path
from typing import Dict, Any, List

from .config import replace_placeholders
from .context import ExecutionContext
from .executor import MSI_ACTIONS


PHASES = ("pre", "main", "post")

# Fields each step kind must carry
REQUIRED_FIELDS = {
    "process": ("path",),
    "msi": ("path", "action"),
    "remove_files": ("paths",),
    "environment": ("name", "value"),
}


def _is_inside(path: Path, directory: Path) -> bool:
    try:
        path.resolve().relative_to(directory.resolve())
        return True
    except ValueError:
        return False


def _validate_step(step: Any, label: str, ctx: ExecutionContext, errors: List[str]) -> None:
    logger = ctx.logger

    if not isinstance(step, dict):
        errors.append(f"{label}: step must be a mapping")
        return

    step_id = step.get("id", label)
    kind = step.get("kind")
    logger.info(f"\n  Step {step_id}")
    logger.info(f"    Description: {step.get('description', 'No description')}")

    if not kind:
        errors.append(f"Step '{step_id}' missing 'kind' field")
        return
    if kind not in REQUIRED_FIELDS:
        errors.append(f"Step '{step_id}' has unknown kind '{kind}'")
        return

    logger.info(f"    Kind: {kind}")

    missing = [f for f in REQUIRED_FIELDS[kind] if step.get(f) in (None, "", [])]
    if missing:
        errors.append(f"Step '{step_id}' of kind '{kind}' missing: {', '.join(missing)}")
        return

    if kind == "msi" and str(step["action"]).lower() not in MSI_ACTIONS:
        errors.append(f"Step '{step_id}' has unknown MSI action '{step['action']}'")

    if kind == "remove_files" and not isinstance(step["paths"], list):
        errors.append(f"Step '{step_id}': 'paths' must be a list")

    if not isinstance(step.get("args", []), list):
        errors.append(f"Step '{step_id}': 'args' must be a list")

    if not isinstance(step.get("ignore_exit_codes", []), list):
        errors.append(f"Step '{step_id}': 'ignore_exit_codes' must be a list")

    # Installers shipped with the package must be present; anything on
    # the target machine is checked when the step runs
    if kind == "process" and not step.get("only_if_exists"):
        path = Path(replace_placeholders(step["path"], ctx.variables))
        logger.info(f"    Path: {path}")
        if _is_inside(path, ctx.files_dir):
            if not path.is_file():
                errors.append(f"Step '{step_id}' file not found: {path}")
            else:
                logger.info(f"    ✓ File exists")


def validate_plan(plan_file: Path, plan_data: Dict[str, Any], ctx: ExecutionContext) -> bool:
    """Validate the plan section for the requested deployment type."""
    logger = ctx.logger
    deployment_type = ctx.request.deployment_type

    logger.info("=" * 60)
    logger.info("VALIDATION: Checking deployment plan")
    logger.info("=" * 60)

    errors = []

    section = plan_data.get(deployment_type.section)
    if not isinstance(section, dict):
        logger.error(f"❌ Plan has no '{deployment_type.section}' section: {plan_file}")
        return False

    metadata = plan_data.get("metadata", {})
    if metadata:
        logger.info(f"✓ Application: {metadata.get('vendor', '')} {metadata.get('name', 'Unknown')}")
        logger.info(f"  Version: {metadata.get('version', 'Unknown')}")

    welcome = section.get("welcome") or {}
    if not isinstance(welcome.get("close_apps", []), list):
        errors.append("'welcome.close_apps' must be a list")
    countdown = welcome.get("countdown")
    if countdown is not None and (not isinstance(countdown, int) or countdown < 0):
        errors.append("'welcome.countdown' must be a non-negative number of seconds")

    prompt = section.get("restart_prompt")
    if isinstance(prompt, dict):
        prompt = prompt.get("countdown", 600)
    if prompt is not None and not isinstance(prompt, bool) and (
            not isinstance(prompt, int) or prompt < 0):
        errors.append("'restart_prompt' must be true, false or a non-negative number of seconds")

    if not section.get("main"):
        errors.append(f"'{deployment_type.section}.main' has no steps")

    seen = set()
    for phase in PHASES:
        steps = section.get(phase) or []
        if not isinstance(steps, list):
            errors.append(f"'{deployment_type.section}.{phase}' must be a list")
            continue

        for idx, step in enumerate(steps, 1):
            label = f"{phase}_{idx}"
            if isinstance(step, dict):
                step_id = step.get("id", label)
                if step_id in seen:
                    errors.append(f"Duplicate step id '{step_id}'")
                seen.add(step_id)
            _validate_step(step, label, ctx, errors)

    if errors:
        logger.error("\n❌ PLAN VALIDATION FAILED:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    logger.info(f"\n✅ Plan validation passed! ({len(seen)} steps)")
    logger.info("=" * 60)
    return True
