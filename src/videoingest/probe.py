"""
Aspect ratio classification of video files via ffprobe.
"""

import enum
import json
import logging

from .errors import NoVideoStreamError, ParseError

logger = logging.getLogger(__name__)

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO = 9 / 16
TOLERANCE = 0.1


class AspectRatio(str, enum.Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"


def classify(width, height):
    """
    Classifies a frame size into landscape (16:9), portrait (9:16) or other.
    """
    ratio = width / height
    if abs(ratio - LANDSCAPE_RATIO) < TOLERANCE:
        return AspectRatio.LANDSCAPE
    if abs(ratio - PORTRAIT_RATIO) < TOLERANCE:
        return AspectRatio.PORTRAIT
    return AspectRatio.OTHER


def classify_streams(streams):
    """
    Classifies the first stream with a positive width and height.

    Streams without both dimensions (audio, subtitles, data) are skipped.
    """
    for stream in streams:
        width = stream.get("width") or 0
        height = stream.get("height") or 0
        if width > 0 and height > 0:
            return classify(width, height)
    raise NoVideoStreamError("no valid video stream found")


def parse_streams(output):
    """
    Decodes ffprobe's ``-print_format json -show_streams`` output into a list
    of stream dicts.
    """
    try:
        info = json.loads(output)
    except (TypeError, ValueError) as e:
        raise ParseError(f"failed to decode ffprobe output: {e}") from e

    streams = info.get("streams") if isinstance(info, dict) else None
    if not isinstance(streams, list):
        raise ParseError("ffprobe output has no 'streams' list")

    for stream in streams:
        if not isinstance(stream, dict):
            raise ParseError("ffprobe stream entry is not an object")
        for dim in ("width", "height"):
            value = stream.get(dim)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int)
            ):
                raise ParseError(f"ffprobe stream {dim} is not an integer: {value!r}")
    return streams


def probe(path, runner, ffprobe="ffprobe"):
    """Runs ffprobe against ``path`` and returns its ``AspectRatio``."""
    cmd = [
        ffprobe,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        path,
    ]
    result = runner.run(cmd)
    streams = parse_streams(result.stdout)
    aspect = classify_streams(streams)
    logger.debug("Probed %s: %d streams, aspect %s", path, len(streams), aspect.value)
    return aspect
