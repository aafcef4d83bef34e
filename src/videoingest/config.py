import os
import tempfile
from dataclasses import dataclass

ENV_TRUE = ["t", "true", "1", "yes"]

# --- Constants ---
MB = 1024**2
GB = 1024**3


def _flag(environ, name, default):
    return environ.get(name, default).lower() in ENV_TRUE


def _default_assets_root(environ):
    # Lambda only allows writes under /tmp.
    if environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        return os.path.join(tempfile.gettempdir(), "assets")
    return "./assets"


@dataclass(frozen=True)
class Config:
    """
    Service settings, built once at startup and handed to ``create_app``.

    Every component receives what it needs from here; nothing reads the
    environment after startup.
    """

    bucket_name: str = ""
    jwt_secret: str = ""
    jwt_issuer: str = "videoingest-access"
    records_bucket: str = ""
    records_prefix: str = "records/"
    record_store: str = "s3"
    aws_region: str = None
    s3_endpoint_url: str = None
    cdn_base_url: str = ""
    assets_root: str = "./assets"
    assets_base_url: str = ""
    port: int = 8091
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    tool_timeout: float = 300.0
    max_video_bytes: int = 1 * GB
    max_thumbnail_bytes: int = 10 * MB
    sniff_uploads: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ

        bucket = environ.get("BUCKET_NAME", "")
        port = int(environ.get("PORT", 8091))
        return cls(
            bucket_name=bucket,
            jwt_secret=environ.get("JWT_SECRET", ""),
            jwt_issuer=environ.get("JWT_ISSUER", "videoingest-access"),
            records_bucket=environ.get("RECORDS_BUCKET", bucket),
            records_prefix=environ.get("RECORDS_PREFIX", "records/"),
            record_store=environ.get("RECORD_STORE", "s3").lower(),
            aws_region=environ.get("AWS_REGION") or None,
            s3_endpoint_url=environ.get("S3_ENDPOINT_URL") or None,
            cdn_base_url=environ.get(
                "CDN_BASE_URL", f"https://{bucket}.s3.amazonaws.com"
            ).rstrip("/"),
            assets_root=environ.get("ASSETS_ROOT") or _default_assets_root(environ),
            assets_base_url=environ.get(
                "ASSETS_BASE_URL", f"http://localhost:{port}"
            ).rstrip("/"),
            port=port,
            ffmpeg=environ.get("FFMPEG", "ffmpeg"),
            ffprobe=environ.get("FFPROBE", "ffprobe"),
            tool_timeout=float(environ.get("TOOL_TIMEOUT", 300)),
            max_video_bytes=int(environ.get("MAX_VIDEO_BYTES", 1 * GB)),
            max_thumbnail_bytes=int(environ.get("MAX_THUMBNAIL_BYTES", 10 * MB)),
            sniff_uploads=_flag(environ, "SNIFF_UPLOADS", "true"),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self):
        missing = []
        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.bucket_name:
            missing.append("BUCKET_NAME")
        if self.record_store == "s3" and not self.records_bucket:
            missing.append("RECORDS_BUCKET")
        if self.record_store not in ("s3", "memory"):
            raise ValueError(f"Unknown RECORD_STORE: {self.record_store}")
        if missing:
            raise ValueError(f"Missing configuration: {', '.join(missing)}")
        return self
