import logging
import os
import secrets

import serverless_wsgi
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import IngestError
from .records import InMemoryRecordStore, S3RecordStore
from .storage import StoragePublisher, make_s3_client
from .thumbnails import handle_thumbnail_upload
from .tools import SubprocessRunner, check_dependencies
from .uploads import MULTIPART_OVERHEAD, Services, handle_video_upload

logger = logging.getLogger(__name__)

EXTENSION_KEY = "videoingest"

# Cached across warm Lambda invocations.
_lambda_app = None


def create_app(config=None, *, store=None, publisher=None, runner=None):
    """
    Builds the Flask application.

    Collaborators not passed in are built from ``config``: an S3 (or
    in-memory) record store, an S3 publisher and a subprocess tool runner.
    """
    if config is None:
        config = Config.from_env()
    config.validate()
    logging.getLogger("videoingest").setLevel(config.log_level)

    s3_client = None
    if store is None or publisher is None:
        s3_client = make_s3_client(config)
    if store is None:
        if config.record_store == "memory":
            store = InMemoryRecordStore()
        else:
            store = S3RecordStore(s3_client, config.records_bucket, config.records_prefix)
    if publisher is None:
        publisher = StoragePublisher(s3_client, config.bucket_name)
    if runner is None:
        runner = SubprocessRunner(timeout=config.tool_timeout)

    os.makedirs(config.assets_root, exist_ok=True)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.max_video_bytes + MULTIPART_OVERHEAD
    app.extensions[EXTENSION_KEY] = Services(
        config=config, store=store, publisher=publisher, runner=runner
    )

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or secrets.token_hex(8)

    @app.after_request
    def echo_request_id(response):
        response.headers["X-Request-ID"] = g.get("request_id", "")
        return response

    @app.errorhandler(IngestError)
    def handle_ingest_error(e):
        if e.status_code >= 500:
            logger.error("[%s] %s", g.get("request_id"), e.message, exc_info=e)
        else:
            logger.warning("[%s] %s", g.get("request_id"), e.message)
        return jsonify({"status": "error", "message": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"status": "error", "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.error("[%s] Unhandled error: %s", g.get("request_id"), e, exc_info=True)
        return jsonify({"status": "error", "message": "Something went wrong"}), 500

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/videos/<video_id>/video", methods=["POST"])
    def upload_video(video_id):
        """Accepts an MP4 upload and publishes it for the given video."""
        services = app.extensions[EXTENSION_KEY]
        record = handle_video_upload(services, g.request_id, video_id, request)
        return jsonify(record.to_dict())

    @app.route("/videos/<video_id>/thumbnail", methods=["POST"])
    def upload_thumbnail(video_id):
        """Accepts a JPEG or PNG thumbnail for the given video."""
        services = app.extensions[EXTENSION_KEY]
        record = handle_thumbnail_upload(services, g.request_id, video_id, request)
        return jsonify(record.to_dict())

    return app


def lambda_handler(event, context):
    """
    AWS Lambda entry point. API Gateway HTTP requests are handed to the
    Flask app; other invocation types are rejected.
    """
    global _lambda_app

    if event.get("requestContext", {}).get("http"):
        logger.info("Processing API Gateway request")
        if _lambda_app is None:
            _lambda_app = create_app()
        return serverless_wsgi.handle_request(_lambda_app, event, context)

    logger.warning("Ignoring unsupported event type")
    return {"statusCode": 400, "body": "Unsupported event"}


def main():
    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    check_dependencies(config.ffmpeg, config.ffprobe)
    app = create_app(config)
    logger.info("Serving on port %d", config.port)
    app.run(host="0.0.0.0", port=config.port, threaded=True)


if __name__ == "__main__":
    main()
