import logging
import os

from .errors import ToolInvocationError

logger = logging.getLogger(__name__)

PROCESSING_SUFFIX = ".processing"


def rewrite_for_fast_start(path, runner, ffmpeg="ffmpeg"):
    """
    Repackages ``path`` into an MP4 with the moov atom moved to the front.

    Streams are copied without re-encoding. The output is written next to the
    input as ``<path>.processing`` and its path is returned; the input is
    left untouched.
    """
    output_path = path + PROCESSING_SUFFIX
    cmd = [
        ffmpeg,
        "-y",
        "-loglevel",
        "error",
        "-i",
        path,
        "-c",
        "copy",
        "-movflags",
        "faststart",
        "-f",
        "mp4",
        output_path,
    ]
    try:
        runner.run(cmd)
    except ToolInvocationError:
        _remove_partial(output_path)
        raise
    logger.debug("Rewrote %s for fast start -> %s", path, output_path)
    return output_path


def _remove_partial(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Error removing partial output %s: %s", path, e)
