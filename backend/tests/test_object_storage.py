"""SigV4 presigning and object download behaviour."""

from __future__ import annotations

import io
import unittest
from datetime import datetime, timezone
from urllib import error as urllib_error
from urllib.parse import parse_qs, urlparse

from spendpipe.config import Settings
from spendpipe.storage.object_storage import (
    ObjectStorageClient,
    ObjectStorageConfig,
    ObjectStorageConfigError,
    ObjectStorageError,
    canonical_query_string,
    derive_signing_key,
    encode_object_path,
    presign_object_url,
)

CONFIG = ObjectStorageConfig(
    endpoint="https://s3.eu-west-2.amazonaws.com",
    region="eu-west-2",
    bucket="spend-uploads",
    access_key_id="AKIDEXAMPLE",
    secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
)
NOW = datetime(2026, 10, 17, 9, 30, 5, tzinfo=timezone.utc)


class _FakeResponse(io.BytesIO):
    status = 200

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SigningTests(unittest.TestCase):
    def test_signing_key_matches_published_vector(self) -> None:
        key = derive_signing_key("wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY", "20120215", "us-east-1", "iam")
        self.assertEqual(key.hex(), "f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d")

    def test_object_path_encodes_each_segment(self) -> None:
        self.assertEqual(
            encode_object_path("spend-uploads", "/uploads/2026-10-17/abc-NHS spend (March).xlsx"),
            "/spend-uploads/uploads/2026-10-17/abc-NHS%20spend%20%28March%29.xlsx",
        )

    def test_query_string_is_sorted_and_encoded(self) -> None:
        self.assertEqual(
            canonical_query_string({"b": "x y", "A": "1/2", "a": "~"}),
            "A=1%2F2&a=~&b=x%20y",
        )

    def test_presigned_url_structure(self) -> None:
        url = presign_object_url(CONFIG, method="get", object_key="uploads/a.xlsx", expires_seconds=60, now=NOW)

        parsed = urlparse(url)
        self.assertEqual(parsed.scheme, "https")
        self.assertEqual(parsed.netloc, "s3.eu-west-2.amazonaws.com")
        self.assertEqual(parsed.path, "/spend-uploads/uploads/a.xlsx")
        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        self.assertEqual(params["X-Amz-Algorithm"], "AWS4-HMAC-SHA256")
        self.assertEqual(params["X-Amz-Credential"], "AKIDEXAMPLE/20261017/eu-west-2/s3/aws4_request")
        self.assertEqual(params["X-Amz-Date"], "20261017T093005Z")
        self.assertEqual(params["X-Amz-Expires"], "60")
        self.assertEqual(params["X-Amz-SignedHeaders"], "host")
        self.assertRegex(params["X-Amz-Signature"], r"^[0-9a-f]{64}$")
        self.assertTrue(parsed.query.endswith(f"&X-Amz-Signature={params['X-Amz-Signature']}"))

    def test_signature_is_deterministic_and_method_bound(self) -> None:
        get_url = presign_object_url(CONFIG, method="GET", object_key="uploads/a.xlsx", expires_seconds=60, now=NOW)
        again = presign_object_url(CONFIG, method="GET", object_key="uploads/a.xlsx", expires_seconds=60, now=NOW)
        put_url = presign_object_url(CONFIG, method="PUT", object_key="uploads/a.xlsx", expires_seconds=60, now=NOW)

        self.assertEqual(get_url, again)
        self.assertNotEqual(get_url.rsplit("=", 1)[1], put_url.rsplit("=", 1)[1])

    def test_expiry_must_be_within_seven_days(self) -> None:
        for expires in (0, -5, 7 * 24 * 3600 + 1):
            with self.subTest(expires=expires):
                with self.assertRaises(ValueError):
                    presign_object_url(CONFIG, method="GET", object_key="a", expires_seconds=expires, now=NOW)
        presign_object_url(CONFIG, method="GET", object_key="a", expires_seconds=7 * 24 * 3600, now=NOW)


class ObjectStorageConfigTests(unittest.TestCase):
    def test_missing_credentials_raise_config_error(self) -> None:
        settings = Settings(
            object_storage_bucket="spend-uploads",
            object_storage_access_key_id=None,
            object_storage_secret_access_key=None,
        )
        with self.assertRaises(ObjectStorageConfigError) as ctx:
            ObjectStorageConfig.from_settings(settings)
        self.assertIn("access key id", str(ctx.exception))

    def test_endpoint_defaults_from_region(self) -> None:
        settings = Settings(
            object_storage_endpoint=None,
            object_storage_region="eu-west-2",
            object_storage_bucket="spend-uploads",
            object_storage_access_key_id="AKIDEXAMPLE",
            object_storage_secret_access_key="secret",
        )
        config = ObjectStorageConfig.from_settings(settings)
        self.assertEqual(config.endpoint, "https://s3.eu-west-2.amazonaws.com")


class ObjectStorageClientTests(unittest.TestCase):
    def test_download_returns_body(self) -> None:
        requests = []

        def opener(req, timeout):
            requests.append((req, timeout))
            return _FakeResponse(b"xlsx-bytes")

        client = ObjectStorageClient(CONFIG, timeout_seconds=5.0, opener=opener)

        self.assertEqual(client.download("uploads/a.xlsx"), b"xlsx-bytes")
        req, timeout = requests[0]
        self.assertEqual(req.get_method(), "GET")
        self.assertEqual(timeout, 5.0)
        self.assertIn("/spend-uploads/uploads/a.xlsx?", req.full_url)

    def test_http_error_becomes_storage_error(self) -> None:
        def opener(req, timeout):
            raise urllib_error.HTTPError(req.full_url, 403, "Forbidden", None, None)

        client = ObjectStorageClient(CONFIG, opener=opener)

        with self.assertRaises(ObjectStorageError) as ctx:
            client.download("uploads/a.xlsx")
        self.assertIn("HTTP 403", str(ctx.exception))

    def test_exists_sends_head_request(self) -> None:
        methods = []

        def opener(req, timeout):
            methods.append(req.get_method())
            return _FakeResponse(b"")

        self.assertTrue(ObjectStorageClient(CONFIG, opener=opener).exists("uploads/a.xlsx"))
        self.assertEqual(methods, ["HEAD"])

        def missing(req, timeout):
            raise urllib_error.HTTPError(req.full_url, 404, "Not Found", None, None)

        self.assertFalse(ObjectStorageClient(CONFIG, opener=missing).exists("uploads/a.xlsx"))


if __name__ == "__main__":
    unittest.main()
