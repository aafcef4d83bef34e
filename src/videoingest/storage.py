import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError

logger = logging.getLogger(__name__)


def make_s3_client(config):
    """Builds the S3 client used by the publisher and the record store."""
    kwargs = {}
    if config.aws_region:
        kwargs["region_name"] = config.aws_region
    if config.s3_endpoint_url:
        kwargs["endpoint_url"] = config.s3_endpoint_url
    return boto3.client("s3", **kwargs)


def public_url(base, key):
    return f"{base.rstrip('/')}/{key}"


class StoragePublisher:
    """
    Uploads finished files to the video bucket with a single ``put_object``.

    No multipart upload and no retries; a failure is reported to the caller
    as ``StorageError``.
    """

    def __init__(self, s3_client, bucket):
        self.s3 = s3_client
        self.bucket = bucket

    def publish(self, key, body, content_type):
        logger.info("Uploading to s3://%s/%s (%s)", self.bucket, key, content_type)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Error uploading s3://%s/%s: %s", self.bucket, key, e, exc_info=True
            )
            raise StorageError(f"failed to upload file to S3: {e}") from e
        logger.info("Successfully uploaded s3://%s/%s", self.bucket, key)
