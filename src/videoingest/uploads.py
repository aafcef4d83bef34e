"""
Video upload pipeline.

A request moves through these steps, and any of them can end it:

1. Authenticate the bearer token and check the caller owns the record.
2. Stage the multipart ``video`` field into a private temporary file.
3. Classify the aspect ratio with ffprobe.
4. Rewrite the container for fast start with ffmpeg.
5. Derive the storage key ``<aspect>/<32 hex>.mp4``.
6. Upload the rewritten file to S3.
7. Point the record's ``video_url`` at the uploaded object.

The staged and rewritten files are removed whatever the outcome.
"""

import contextlib
import logging
import os
import secrets
import shutil
import tempfile
import uuid
from dataclasses import dataclass

from . import sniff
from .auth import get_bearer_token, validate_token
from .errors import (
    BadRequest,
    Forbidden,
    MediaError,
    PayloadTooLarge,
    PersistenceError,
    ProcessingError,
    StagingError,
    UnsupportedMediaType,
)
from .probe import AspectRatio, probe
from .rewrite import PROCESSING_SUFFIX, rewrite_for_fast_start
from .storage import public_url

logger = logging.getLogger(__name__)

VIDEO_FIELD = "video"
VIDEO_MIME_TYPE = "video/mp4"

# Room for multipart boundaries, part headers and small form fields.
MULTIPART_OVERHEAD = 64 * 1024

FOLDERS = {
    AspectRatio.LANDSCAPE: "landscape",
    AspectRatio.PORTRAIT: "portrait",
    AspectRatio.OTHER: "other",
}


@dataclass
class Services:
    """Everything a request handler needs, built once by ``create_app``."""

    config: object
    store: object
    publisher: object
    runner: object


def parse_video_id(value):
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise BadRequest("Invalid ID") from e


def authorize(services, video_id, headers):
    """
    Resolves the caller from the bearer token and loads the record they are
    about to modify. Returns ``(user_id, record)``.
    """
    token = get_bearer_token(headers)
    user_id = validate_token(
        token, services.config.jwt_secret, services.config.jwt_issuer
    )
    record = services.store.get(video_id)
    if record.user_id != user_id:
        raise Forbidden("You're not allowed to edit this video")
    return user_id, record


def check_content_length(request, limit):
    """
    Rejects a request whose declared body cannot hold a file of at most
    ``limit`` bytes. Boundaries and part headers get ``MULTIPART_OVERHEAD``
    bytes on top; the file field itself is measured exactly once read.
    """
    ceiling = limit + MULTIPART_OVERHEAD
    if request.content_length is not None and request.content_length > ceiling:
        raise PayloadTooLarge(f"Request body exceeds {ceiling} bytes")


def make_video_key(aspect):
    return f"{FOLDERS[aspect]}/{secrets.token_hex(16)}.mp4"


def handle_video_upload(services, request_id, video_id, request):
    """
    Runs the video pipeline for one request and returns the updated record.

    ``request`` needs ``headers``, ``content_length`` and ``files``; the
    multipart body is not parsed until the caller is authorized.
    """
    config = services.config
    video_id = parse_video_id(video_id)
    user_id, record = authorize(services, video_id, request.headers)
    logger.info("[%s] uploading video %s by user %s", request_id, video_id, user_id)

    check_content_length(request, config.max_video_bytes)
    upload = request.files.get(VIDEO_FIELD)
    if upload is None:
        raise BadRequest("Unable to parse form file")
    if upload.mimetype != VIDEO_MIME_TYPE:
        raise UnsupportedMediaType(f"Unsupported file type: {upload.mimetype}")

    with _scratch_file(".mp4") as staged_path:
        _stage_upload(
            upload, staged_path, config.sniff_uploads, config.max_video_bytes
        )

        try:
            aspect = probe(staged_path, services.runner, ffprobe=config.ffprobe)
        except MediaError as e:
            raise ProcessingError(f"failed to get file aspect ratio: {e}") from e
        logger.info("[%s] aspect ratio %s", request_id, aspect.value)

        try:
            processed_path = rewrite_for_fast_start(
                staged_path, services.runner, ffmpeg=config.ffmpeg
            )
        except MediaError as e:
            raise ProcessingError(f"failed to process video for fast start: {e}") from e

        key = make_video_key(aspect)
        try:
            body = open(processed_path, "rb")
        except OSError as e:
            raise StagingError(f"failed to open processed file: {e}") from e
        with body:
            services.publisher.publish(key, body, VIDEO_MIME_TYPE)

    record.video_url = public_url(config.cdn_base_url, key)
    try:
        services.store.update(record)
    except PersistenceError:
        logger.error(
            "[%s] video %s stored at %s but the record was not updated",
            request_id,
            video_id,
            record.video_url,
        )
        raise
    logger.info("[%s] video %s published at %s", request_id, video_id, record.video_url)
    return record


def _stage_upload(upload, path, sniff_uploads, limit):
    try:
        with open(path, "wb+") as staged:
            shutil.copyfileobj(upload.stream, staged)
            size = staged.tell()
            staged.seek(0)
            head = staged.read(sniff.SNIFF_BYTES)
    except OSError as e:
        raise StagingError(f"Error while copying file: {e}") from e

    if size > limit:
        raise PayloadTooLarge(f"Video exceeds {limit} bytes")

    if sniff_uploads and not sniff.is_iso_bmff(head):
        raise UnsupportedMediaType("Uploaded file is not an MP4 container")


@contextlib.contextmanager
def _scratch_file(suffix):
    """
    Yields the path of a new private temporary file. The file and any
    ``.processing`` sibling are removed on exit.
    """
    try:
        fd, path = tempfile.mkstemp(prefix="videoingest-upload-", suffix=suffix)
    except OSError as e:
        raise StagingError(f"failed to create temp file: {e}") from e
    os.close(fd)
    try:
        yield path
    finally:
        _remove_quietly(path + PROCESSING_SUFFIX)
        _remove_quietly(path)


def _remove_quietly(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Error removing temporary file %s: %s", path, e)
