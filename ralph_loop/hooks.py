"""Lifecycle hooks: post_task, post_group and on_complete scripts.

Hooks are conveniences, not gates. A missing script is logged and treated
as passing; a failing script is reported but never stops the loop.
"""

import logging
import subprocess
from pathlib import Path

from ralph_loop.models import HookResult

logger = logging.getLogger(__name__)

HOOK_NAMES = ("post_task", "post_group", "on_complete")


def run_hook(name: str, script: str, root: Path) -> HookResult:
    """Run a hook script with bash from the orchestration root.

    Args:
        name: Hook name for reporting (e.g. "post_task")
        script: Script path relative to ``root``; empty means not configured
        root: Orchestration root, used as the working directory

    Returns:
        HookResult with skipped/passed/failed status
    """
    script = script.strip()
    if not script:
        return HookResult(name=name, status="skipped")

    script_path = root / script
    if not script_path.is_file():
        logger.warning(f"Hook script not found for {name}: {script}")
        return HookResult(name=name, status="passed", script=script)

    logger.info(f"Running {name} hook: {script}")
    try:
        result = subprocess.run(["bash", script], cwd=root, check=False)
    except OSError as e:
        logger.warning(f"{name} hook could not start: {e}")
        return HookResult(name=name, status="failed", script=script)

    if result.returncode != 0:
        logger.warning(f"{name} hook failed (exit {result.returncode})")
        return HookResult(
            name=name, status="failed", script=script, returncode=result.returncode
        )

    logger.info(f"{name} hook completed")
    return HookResult(name=name, status="passed", script=script, returncode=0)
