"""
Runner for external media tools (ffmpeg, ffprobe).

The prober and rewriter never call ``subprocess`` directly; they receive an
object with a ``run(args)`` method so tests can hand in a fake.
"""

import logging
import subprocess

from .errors import ToolInvocationError

logger = logging.getLogger(__name__)


class SubprocessRunner:
    """Runs a command to completion, bounded by ``timeout`` seconds."""

    def __init__(self, timeout=None):
        self.timeout = timeout

    def run(self, args):
        """
        Run ``args`` and return the ``CompletedProcess``.

        Raises ``ToolInvocationError`` if the binary cannot be launched, the
        timeout elapses (the child is killed) or the exit status is non-zero.
        """
        logger.debug("Running: %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError(f"{args[0]} not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            logger.error("Command timed out after %ss: %s", self.timeout, " ".join(args))
            raise ToolInvocationError(
                f"{args[0]} timed out after {self.timeout} seconds"
            ) from e
        except OSError as e:
            raise ToolInvocationError(f"Could not run {args[0]}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            logger.error(
                "Command failed (rc=%d): %s\nstderr: %s",
                result.returncode,
                " ".join(args),
                stderr,
            )
            raise ToolInvocationError(
                f"{args[0]} exited with status {result.returncode}: {stderr}"
            )
        return result


def check_dependencies(ffmpeg="ffmpeg", ffprobe="ffprobe"):
    """Verify that ffmpeg and ffprobe can be run. Call once at startup."""
    runner = SubprocessRunner(timeout=30)
    for tool in (ffmpeg, ffprobe):
        try:
            runner.run([tool, "-version"])
        except ToolInvocationError as e:
            raise RuntimeError(
                f"{tool} not found. Ensure it is installed and on the PATH."
            ) from e
