"""
Video records and the stores that hold them.

The pipeline only needs two operations from a store: ``get(video_id)`` and
``update(record)``. ``S3RecordStore`` keeps one JSON document per record in a
bucket; ``InMemoryRecordStore`` backs tests and local runs.
"""

import copy
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def _parse_time(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class VideoRecord:
    id: uuid.UUID
    user_id: uuid.UUID
    title: str = ""
    description: str = ""
    thumbnail_url: str = None
    video_url: str = None
    created_at: datetime = None
    updated_at: datetime = None

    def __post_init__(self):
        now = _utcnow()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "video_url": self.video_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=uuid.UUID(str(data["id"])),
            user_id=uuid.UUID(str(data["user_id"])),
            title=data.get("title") or "",
            description=data.get("description") or "",
            thumbnail_url=data.get("thumbnail_url"),
            video_url=data.get("video_url"),
            created_at=_parse_time(data["created_at"]) if data.get("created_at") else None,
            updated_at=_parse_time(data["updated_at"]) if data.get("updated_at") else None,
        )

    def touch(self):
        self.updated_at = _utcnow()


class InMemoryRecordStore:
    def __init__(self, records=()):
        self._lock = threading.Lock()
        self._records = {}
        for record in records:
            self._records[record.id] = copy.deepcopy(record)

    def get(self, video_id):
        with self._lock:
            record = self._records.get(video_id)
        if record is None:
            raise NotFound("Video not found")
        return copy.deepcopy(record)

    def update(self, record):
        record.touch()
        with self._lock:
            self._records[record.id] = copy.deepcopy(record)


class S3RecordStore:
    """
    Stores each record as ``<prefix><id>.json`` in ``bucket``.

    Updates read nothing back: the whole document is rewritten from the
    record the caller holds.
    """

    def __init__(self, s3_client, bucket, prefix="records/"):
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix

    def _key(self, video_id):
        return f"{self.prefix}{video_id}.json"

    def get(self, video_id):
        key = self._key(video_id)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            data = json.loads(response["Body"].read().decode("utf-8"))
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                logger.debug("No record at s3://%s/%s", self.bucket, key)
                raise NotFound("Video not found") from e
            logger.error("S3 error reading record %s: %s", key, e, exc_info=True)
            raise PersistenceError(f"Unable to read video record: {e}") from e
        except BotoCoreError as e:
            raise PersistenceError(f"Unable to read video record: {e}") from e
        return VideoRecord.from_dict(data)

    def update(self, record):
        record.touch()
        key = self._key(record.id)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=json.dumps(record.to_dict()),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error writing record %s: %s", key, e, exc_info=True)
            raise PersistenceError(f"Unable to update video: {e}") from e
