import base64
import logging
import os
import secrets

from . import sniff
from .errors import (
    BadRequest,
    PayloadTooLarge,
    PersistenceError,
    StagingError,
    UnsupportedMediaType,
)
from .uploads import authorize, check_content_length, parse_video_id

logger = logging.getLogger(__name__)

THUMBNAIL_FIELD = "thumbnail"

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
}


def make_thumbnail_name(mimetype):
    """43 URL-safe base64 characters (32 random bytes) plus the extension."""
    token = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=")
    return token.decode("ascii") + EXTENSIONS[mimetype]


def handle_thumbnail_upload(services, request_id, video_id, request):
    """
    Saves an uploaded JPEG or PNG into the asset directory and points the
    record's ``thumbnail_url`` at it.
    """
    config = services.config
    video_id = parse_video_id(video_id)
    user_id, record = authorize(services, video_id, request.headers)
    logger.info(
        "[%s] uploading thumbnail for video %s by user %s", request_id, video_id, user_id
    )

    check_content_length(request, config.max_thumbnail_bytes)
    upload = request.files.get(THUMBNAIL_FIELD)
    if upload is None:
        raise BadRequest("Unable to parse form file")
    if upload.mimetype not in EXTENSIONS:
        raise UnsupportedMediaType(f"Unsupported file type: {upload.mimetype}")

    data = upload.stream.read(config.max_thumbnail_bytes + 1)
    if len(data) > config.max_thumbnail_bytes:
        raise PayloadTooLarge(
            f"Thumbnail exceeds {config.max_thumbnail_bytes} bytes"
        )
    if config.sniff_uploads and not sniff.image_matches(upload.mimetype, data):
        raise UnsupportedMediaType(
            f"Uploaded file content does not match {upload.mimetype}"
        )

    filename = make_thumbnail_name(upload.mimetype)
    path = os.path.join(config.assets_root, filename)
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise StagingError(f"Error while creating file: {e}") from e

    record.thumbnail_url = f"{config.assets_base_url}/assets/{filename}"
    try:
        services.store.update(record)
    except PersistenceError:
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("Error removing orphaned thumbnail %s: %s", path, e)
        raise
    logger.info("[%s] thumbnail for video %s saved as %s", request_id, video_id, filename)
    return record
