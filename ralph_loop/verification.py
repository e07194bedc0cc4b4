"""Per-repo verification (build / typecheck) after an agent iteration."""

import logging
import subprocess
from pathlib import Path

from ralph_loop.models import VerificationResult

logger = logging.getLogger(__name__)


def run_verification(work_dir: Path, command: str) -> VerificationResult:
    """Run a repo's verification command in its working tree.

    Output goes straight to the terminal; only the exit code is observed.
    A blank command means the repo has no verification and passes.

    Args:
        work_dir: Working tree to run in
        command: Shell command string, may be empty

    Returns:
        VerificationResult with passed/failed/skipped status
    """
    command = command.strip()
    if not command:
        return VerificationResult(status="skipped")

    logger.info(f"Running verification in {work_dir}: {command}")
    try:
        result = subprocess.run(command, shell=True, cwd=work_dir, check=False)
    except OSError as e:
        logger.error(f"Verification could not start in {work_dir}: {e}")
        return VerificationResult(status="failed", command=command)

    if result.returncode != 0:
        logger.warning(f"Verification failed (exit {result.returncode}): {command}")
        return VerificationResult(
            status="failed", command=command, returncode=result.returncode
        )

    logger.info("Verification passed")
    return VerificationResult(status="passed", command=command, returncode=0)
