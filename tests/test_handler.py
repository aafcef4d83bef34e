import dataclasses
import io
import os
import re
import shutil
import sys
import tempfile
import unittest
import uuid
from unittest.mock import patch

import boto3
from moto import mock_aws

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from fakes import JPEG_BYTES, MP4_BYTES, PNG_BYTES, FakeRunner
from videoingest import app as app_module
from videoingest.app import create_app, lambda_handler
from videoingest.auth import make_token
from videoingest.config import Config
from videoingest.errors import PersistenceError
from videoingest.records import S3RecordStore, VideoRecord
from videoingest.uploads import MULTIPART_OVERHEAD

SECRET = "test-secret"
KEY_PATTERN = re.compile(r"^(landscape|portrait|other)/[0-9a-f]{32}\.mp4$")
THUMBNAIL_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}\.(jpg|png)$")


class UploadTestCase(unittest.TestCase):
    def setUp(self):
        """Set up test client and mock AWS services."""
        self.mock_env = patch.dict(
            os.environ,
            {
                "AWS_ACCESS_KEY_ID": "testing",
                "AWS_SECRET_ACCESS_KEY": "testing",
                "AWS_DEFAULT_REGION": "us-east-1",
            },
        )
        self.mock_env.start()
        self.mock_aws = mock_aws()
        self.mock_aws.start()

        self.s3 = boto3.client("s3", region_name="us-east-1")
        self.s3.create_bucket(Bucket="video-bucket")
        self.s3.create_bucket(Bucket="records-bucket")

        self.assets_root = tempfile.mkdtemp()
        self.config = Config(
            bucket_name="video-bucket",
            records_bucket="records-bucket",
            jwt_secret=SECRET,
            aws_region="us-east-1",
            cdn_base_url="https://d111.cloudfront.net",
            assets_root=self.assets_root,
            assets_base_url="http://localhost:8091",
        )
        self.store = S3RecordStore(self.s3, "records-bucket")

        self.owner_id = uuid.uuid4()
        self.record = VideoRecord(id=uuid.uuid4(), user_id=self.owner_id, title="Boots")
        self.store.update(self.record)

        self.runner = FakeRunner()
        self.client = self._client(self.config)

    def tearDown(self):
        """Stop mocking."""
        shutil.rmtree(self.assets_root, ignore_errors=True)
        self.mock_aws.stop()
        self.mock_env.stop()

    def _client(self, config):
        app = create_app(config, runner=self.runner)
        app.config["TESTING"] = True
        return app.test_client()

    def _headers(self, user_id=None):
        token = make_token(user_id or self.owner_id, SECRET)
        return {"Authorization": f"Bearer {token}"}

    def _post_video(self, data=MP4_BYTES, mimetype="video/mp4", headers=None, video_id=None):
        return self.client.post(
            f"/videos/{video_id or self.record.id}/video",
            data={"video": (io.BytesIO(data), "boots.mp4", mimetype)},
            headers=self._headers() if headers is None else headers,
            content_type="multipart/form-data",
        )

    def _post_thumbnail(self, data=PNG_BYTES, mimetype="image/png", headers=None):
        return self.client.post(
            f"/videos/{self.record.id}/thumbnail",
            data={"thumbnail": (io.BytesIO(data), "thumb", mimetype)},
            headers=self._headers() if headers is None else headers,
            content_type="multipart/form-data",
        )

    def _video_keys(self):
        response = self.s3.list_objects_v2(Bucket="video-bucket")
        return [obj["Key"] for obj in response.get("Contents", [])]

    # --- video uploads ---

    def test_video_upload_publishes_and_updates_record(self):
        response = self._post_video()
        self.assertEqual(response.status_code, 200, response.get_json())

        keys = self._video_keys()
        self.assertEqual(len(keys), 1)
        self.assertRegex(keys[0], KEY_PATTERN)
        self.assertTrue(keys[0].startswith("landscape/"))

        obj = self.s3.get_object(Bucket="video-bucket", Key=keys[0])
        self.assertEqual(obj["ContentType"], "video/mp4")
        self.assertEqual(obj["Body"].read(), MP4_BYTES)

        body = response.get_json()
        self.assertEqual(body["video_url"], f"https://d111.cloudfront.net/{keys[0]}")
        self.assertEqual(body["id"], str(self.record.id))
        self.assertEqual(self.store.get(self.record.id).video_url, body["video_url"])
        self.assertIn("X-Request-ID", response.headers)

    def test_video_upload_removes_temporary_files(self):
        self._post_video()

        staged = self.runner.input_paths()
        self.assertEqual(len(staged), 1)
        self.assertFalse(os.path.exists(staged[0]))
        self.assertFalse(os.path.exists(staged[0] + ".processing"))

    def test_video_upload_portrait_folder(self):
        self.runner.streams = [{"width": 1080, "height": 1920}]
        self._post_video()
        self.assertTrue(self._video_keys()[0].startswith("portrait/"))

    def test_quicktime_rejected_without_side_effects(self):
        with patch.object(S3RecordStore, "update") as mock_update:
            response = self._post_video(mimetype="video/quicktime")

        self.assertEqual(response.status_code, 415)
        self.assertEqual(response.get_json()["status"], "error")
        mock_update.assert_not_called()
        self.assertEqual(self._video_keys(), [])
        self.assertEqual(self.runner.calls, [])

    def test_non_mp4_bytes_rejected(self):
        response = self._post_video(data=b"RIFF\x00\x00\x00\x00AVI " + b"\x00" * 64)
        self.assertEqual(response.status_code, 415)
        self.assertEqual(self.runner.calls, [])

    def test_sniffing_can_be_disabled(self):
        self.client = self._client(dataclasses.replace(self.config, sniff_uploads=False))
        response = self._post_video(data=b"not really an mp4")
        self.assertEqual(response.status_code, 200)

    def test_missing_video_field(self):
        response = self.client.post(
            f"/videos/{self.record.id}/video",
            data={"other": (io.BytesIO(MP4_BYTES), "boots.mp4", "video/mp4")},
            headers=self._headers(),
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 400)

    def test_foreign_owner_rejected_before_staging(self):
        with patch("videoingest.uploads.tempfile.mkstemp") as mock_mkstemp:
            response = self._post_video(headers=self._headers(uuid.uuid4()))

        self.assertEqual(response.status_code, 403)
        mock_mkstemp.assert_not_called()
        self.assertEqual(self.runner.calls, [])

    def test_missing_token(self):
        response = self._post_video(headers={})
        self.assertEqual(response.status_code, 401)

    def test_invalid_token(self):
        response = self._post_video(headers={"Authorization": "Bearer nope"})
        self.assertEqual(response.status_code, 401)

    def test_unknown_video(self):
        response = self._post_video(video_id=uuid.uuid4())
        self.assertEqual(response.status_code, 404)

    def test_invalid_video_id(self):
        response = self._post_video(video_id="not-a-uuid")
        self.assertEqual(response.status_code, 400)

    def test_oversized_video_rejected(self):
        self.client = self._client(dataclasses.replace(self.config, max_video_bytes=64))
        response = self._post_video()
        self.assertEqual(response.status_code, 413)
        self.assertEqual(self.runner.calls, [])

    def test_video_exactly_at_size_limit(self):
        self.client = self._client(
            dataclasses.replace(self.config, max_video_bytes=len(MP4_BYTES))
        )
        response = self._post_video()
        self.assertEqual(response.status_code, 200, response.get_json())

    def test_video_request_body_far_over_limit_not_staged(self):
        self.client = self._client(dataclasses.replace(self.config, max_video_bytes=64))
        data = MP4_BYTES + b"\x00" * (MULTIPART_OVERHEAD + 1)
        with patch("videoingest.uploads.tempfile.mkstemp") as mock_mkstemp:
            response = self._post_video(data=data)

        self.assertEqual(response.status_code, 413)
        mock_mkstemp.assert_not_called()

    def test_probe_failure_is_processing_error(self):
        self.runner.probe_error = "ffprobe exited with status 1"
        response = self._post_video()

        self.assertEqual(response.status_code, 500)
        self.assertIn("aspect ratio", response.get_json()["message"])
        self.assertFalse(os.path.exists(self.runner.input_paths()[0]))
        self.assertIsNone(self.store.get(self.record.id).video_url)

    def test_rewrite_failure_is_processing_error(self):
        self.runner.rewrite_error = "ffmpeg exited with status 1"
        response = self._post_video()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(self._video_keys(), [])
        self.assertIsNone(self.store.get(self.record.id).video_url)

    def test_storage_failure_leaves_record_untouched(self):
        self.s3.delete_bucket(Bucket="video-bucket")
        response = self._post_video()

        self.assertEqual(response.status_code, 500)
        self.assertIn("failed to upload file to S3", response.get_json()["message"])
        self.assertIsNone(self.store.get(self.record.id).video_url)
        staged = self.runner.input_paths()[0]
        self.assertFalse(os.path.exists(staged + ".processing"))

    def test_record_update_failure_after_publish(self):
        failure = PersistenceError("Unable to update video")
        with patch.object(S3RecordStore, "update", side_effect=failure):
            response = self._post_video()

        # The object stays in the bucket; only the record is missing the URL.
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["message"], "Unable to update video")
        self.assertEqual(len(self._video_keys()), 1)
        self.assertIsNone(self.store.get(self.record.id).video_url)

    # --- thumbnails ---

    def test_thumbnail_upload_png(self):
        response = self._post_thumbnail()
        self.assertEqual(response.status_code, 200, response.get_json())

        url = response.get_json()["thumbnail_url"]
        self.assertTrue(url.startswith("http://localhost:8091/assets/"))
        filename = url.rsplit("/", 1)[1]
        self.assertRegex(filename, THUMBNAIL_PATTERN)
        self.assertTrue(filename.endswith(".png"))

        with open(os.path.join(self.assets_root, filename), "rb") as f:
            self.assertEqual(f.read(), PNG_BYTES)
        self.assertEqual(self.store.get(self.record.id).thumbnail_url, url)

    def test_thumbnail_upload_jpeg_extension(self):
        response = self._post_thumbnail(data=JPEG_BYTES, mimetype="image/jpeg")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["thumbnail_url"].endswith(".jpg"))

    def test_thumbnail_rejects_other_types(self):
        response = self._post_thumbnail(data=b"GIF89a" + b"\x00" * 32, mimetype="image/gif")
        self.assertEqual(response.status_code, 415)
        self.assertEqual(os.listdir(self.assets_root), [])

    def test_thumbnail_content_must_match_type(self):
        response = self._post_thumbnail(data=JPEG_BYTES, mimetype="image/png")
        self.assertEqual(response.status_code, 415)

    def test_thumbnail_size_limit(self):
        self.client = self._client(dataclasses.replace(self.config, max_thumbnail_bytes=16))
        response = self._post_thumbnail()
        self.assertEqual(response.status_code, 413)
        self.assertEqual(os.listdir(self.assets_root), [])

    def test_thumbnail_exactly_at_size_limit(self):
        # The multipart framing around the image must not count against the limit.
        self.client = self._client(
            dataclasses.replace(self.config, max_thumbnail_bytes=len(PNG_BYTES))
        )
        response = self._post_thumbnail()
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertTrue(response.get_json()["thumbnail_url"].endswith(".png"))

    def test_thumbnail_request_body_far_over_limit(self):
        self.client = self._client(dataclasses.replace(self.config, max_thumbnail_bytes=16))
        data = PNG_BYTES + b"\x00" * (MULTIPART_OVERHEAD + 1)
        response = self._post_thumbnail(data=data)
        self.assertEqual(response.status_code, 413)
        self.assertIn("Request body exceeds", response.get_json()["message"])

    def test_thumbnail_foreign_owner(self):
        response = self._post_thumbnail(headers=self._headers(uuid.uuid4()))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(os.listdir(self.assets_root), [])

    # --- misc ---

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.get_json(), {"status": "ok"})

    def test_unknown_route_uses_error_envelope(self):
        response = self.client.get("/api/nope")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["status"], "error")


class LambdaHandlerTestCase(unittest.TestCase):
    def setUp(self):
        app_module._lambda_app = None
        self.addCleanup(setattr, app_module, "_lambda_app", None)

    @patch("serverless_wsgi.handle_request")
    @patch("videoingest.app.create_app")
    def test_api_gateway_event(self, mock_create_app, mock_handle_request):
        event = {"requestContext": {"http": {"method": "GET", "path": "/api/health"}}}
        lambda_handler(event, {})
        lambda_handler(event, {})

        mock_create_app.assert_called_once_with()
        self.assertEqual(mock_handle_request.call_count, 2)
        mock_handle_request.assert_called_with(mock_create_app.return_value, event, {})

    def test_other_event(self):
        response = lambda_handler({"Records": []}, {})
        self.assertEqual(response["statusCode"], 400)


if __name__ == "__main__":
    unittest.main()
