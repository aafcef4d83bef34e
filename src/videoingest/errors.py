"""
Error types raised by the ingestion pipeline.

``IngestError`` subclasses carry the HTTP status they are rendered with.
``MediaError`` subclasses come from ffprobe/ffmpeg handling and are wrapped
into ``ProcessingError`` by the upload orchestrator.
"""


class IngestError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(IngestError):
    status_code = 400


class UnsupportedMediaType(BadRequest):
    status_code = 415


class PayloadTooLarge(BadRequest):
    status_code = 413


class Unauthenticated(IngestError):
    status_code = 401


class Forbidden(IngestError):
    status_code = 403


class NotFound(IngestError):
    status_code = 404


class ProcessingError(IngestError):
    pass


class StagingError(IngestError):
    pass


class StorageError(IngestError):
    pass


class PersistenceError(IngestError):
    pass


class MediaError(Exception):
    pass


class ToolInvocationError(MediaError):
    pass


class ParseError(MediaError):
    pass


class NoVideoStreamError(MediaError):
    pass
