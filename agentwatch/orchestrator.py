"""Bridge to the external plan orchestrator CLI."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from agentwatch import config

logger = logging.getLogger("agentwatch.orchestrator")


@dataclass
class CompletionResult:
    args: tuple[str, ...]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class CompletionTrigger:
    """Runs ``<binary> plan complete <job file>`` for a finished agent job.

    Failures are logged at debug level only; ``complete`` never raises.
    """

    binary: str = config.ORCHESTRATOR_BIN
    grace_seconds: float = config.COMPLETION_GRACE_SECONDS
    debug: bool = config.DEBUG

    def command_for(self, job_file_path: str) -> list[str]:
        return [self.binary, "plan", "complete", job_file_path]

    async def complete(self, job_file_path: str) -> CompletionResult:
        cmd = self.command_for(job_file_path)
        output = asyncio.subprocess.PIPE if self.debug else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
            stdout_bytes, stderr_bytes = await process.communicate()
        except OSError as e:
            logger.debug("Completion trigger for %s failed to start: %s", job_file_path, e)
            return CompletionResult(args=tuple(cmd), returncode=None, stderr=str(e))

        result = CompletionResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
        )
        if not result.ok:
            logger.debug(
                "Completion trigger for %s exited %s: %s",
                job_file_path,
                result.returncode,
                result.stderr.strip(),
            )
        elif self.debug and result.stdout.strip():
            logger.debug("Completion trigger output for %s: %s", job_file_path, result.stdout.strip())
        return result

