"""
Shell command executor.

Every job is an opaque shell string. The executor runs it to completion or
to its hard timeout and reports an Outcome; command failures never escape
this module as exceptions.
"""

import asyncio
import logging
import os
import signal
import time
from typing import Protocol

from queuectl.constants import DEFAULT_JOB_TIMEOUT_SECONDS, DEFAULT_MAX_ERROR_LENGTH
from queuectl.exceptions import ExecutionFailure
from queuectl.types.job import Completed, Outcome, RetryableFailure

logger = logging.getLogger(__name__)


class Executable(Protocol):
    id: str
    command: str


class CommandExecutor:
    """
    Runs job commands through the system shell.

    Exit status 0 is a success. A non-zero exit, a timeout, or a failure to
    spawn the process is reported as RetryableFailure with a normalized,
    length-bounded message.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS,
        max_error_length: int = DEFAULT_MAX_ERROR_LENGTH,
    ):
        """
        Initialize the executor.

        Args:
            timeout_seconds: Hard limit for one command run.
            max_error_length: Failure messages are truncated to this length.
        """
        self.timeout_seconds = timeout_seconds
        self.max_error_length = max_error_length

    async def execute(self, job: Executable) -> Outcome:
        """
        Run the job's command once.

        Args:
            job: Anything with an id and a command.

        Returns:
            Completed or RetryableFailure.
        """
        start_time = time.monotonic()
        try:
            await self._run(job.command)
        except ExecutionFailure as e:
            duration = time.monotonic() - start_time
            message = self._truncate(e.message)
            logger.info(
                "Command failed",
                extra={"job_id": job.id, "exit_code": e.exit_code, "error": message},
            )
            return RetryableFailure(
                message=message,
                exit_code=e.exit_code,
                duration_seconds=duration,
            )

        duration = time.monotonic() - start_time
        logger.debug(
            "Command succeeded",
            extra={"job_id": job.id, "duration": f"{duration:.2f}s"},
        )
        return Completed(duration_seconds=duration)

    async def _run(self, command: str) -> None:
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                # own process group, so a timeout can kill every child of the shell
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionFailure(f"Failed to start command: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except TimeoutError:
            self._kill_group(process)
            await process.wait()
            raise ExecutionFailure(
                f"Command timed out after {self.timeout_seconds:g}s"
            ) from None

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            message = f"Command exited with code {process.returncode}"
            if detail:
                message = f"{message}: {detail}"
            raise ExecutionFailure(message, exit_code=process.returncode)

    @staticmethod
    def _kill_group(process: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _truncate(self, message: str) -> str:
        if len(message) <= self.max_error_length:
            return message
        return message[: self.max_error_length]
