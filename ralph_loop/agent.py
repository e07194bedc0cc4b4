"""Agent invocation.

Builds the argument list for the coding agent CLI and runs it in the routed
working tree, streaming its combined output to the console and to the
iteration transcript.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ralph_loop.config import RalphConfig

logger = logging.getLogger(__name__)

# Exit code reported when the agent cannot be started at all
LAUNCH_FAILURE_EXIT_CODE = 127


def build_agent_args(config: RalphConfig) -> list[str]:
    """Build the agent's arguments: permissions, directories, then input files.

    Context files come before the task file, which is always last.
    """
    args: list[str] = []

    permissions = config.permissions
    if permissions.dangerous_skip_all:
        args.append("--dangerously-skip-permissions")
    else:
        args.extend(["--permission-mode", permissions.mode])
        if permissions.allowed_tools:
            args.append("--allowedTools")
            args.extend(permissions.allowed_tools)

    args.extend(["--add-dir", str(config.root)])
    for repo in config.repos.values():
        args.extend(["--add-dir", str(repo.path)])

    args.append("--")
    args.extend(str(path) for path in config.context_files)
    args.append(str(config.ralph_file))
    return args


@dataclass
class AgentRunner:
    """Runs the agent synchronously, one invocation per iteration.

    There is no timeout: the agent process is responsible for finishing.

    Attributes:
        config: Resolved loop configuration
        echo: Callback receiving each output line (defaults to stdout)
    """

    config: RalphConfig
    echo: Optional[Callable[[str], None]] = None

    def command(self) -> list[str]:
        return [self.config.agent.command, *build_agent_args(self.config)]

    def run(self, work_dir: Path, log_file: Path) -> int:
        """Invoke the agent and tee its output to ``log_file``.

        Args:
            work_dir: Working tree of the routed repo
            log_file: Transcript path for this iteration

        Returns:
            Agent exit code, or LAUNCH_FAILURE_EXIT_CODE if it could not start
        """
        echo = self.echo or _write_stdout
        cmd = self.command()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Running: {' '.join(cmd)} (in {work_dir})")

        with open(log_file, "a", encoding="utf-8") as log:
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=work_dir,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                message = f"Failed to start agent {cmd[0]!r} in {work_dir}: {e}"
                logger.error(message)
                log.write(message + "\n")
                return LAUNCH_FAILURE_EXIT_CODE

            if process.stdout is not None:
                for line in process.stdout:
                    echo(line)
                    log.write(line)
                    log.flush()

            return process.wait()


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()
