"""S3-compatible object storage access through SigV4 presigned URLs."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request
from urllib.parse import quote, urlparse

from spendpipe.config import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
_SERVICE = "s3"


class ObjectStorageError(RuntimeError):
    """Raised when an object cannot be transferred."""


class ObjectStorageConfigError(ObjectStorageError):
    """Raised when storage credentials or bucket are not configured."""


@dataclass(slots=True, frozen=True)
class ObjectStorageConfig:
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ObjectStorageConfig":
        settings = settings or get_settings()
        missing = [
            label
            for label, value in (
                ("bucket", settings.object_storage_bucket),
                ("access key id", settings.object_storage_access_key_id),
                ("secret access key", settings.object_storage_secret_access_key),
            )
            if not value
        ]
        if missing:
            raise ObjectStorageConfigError(f"Object storage is not configured (missing {', '.join(missing)}).")
        region = settings.object_storage_region or "us-east-1"
        return cls(
            endpoint=settings.object_storage_endpoint or default_endpoint(region),
            region=region,
            bucket=settings.object_storage_bucket,
            access_key_id=settings.object_storage_access_key_id,
            secret_access_key=settings.object_storage_secret_access_key,
        )


def default_endpoint(region: str) -> str:
    if region == "us-east-1":
        return "https://s3.amazonaws.com"
    return f"https://s3.{region}.amazonaws.com"


def rfc3986_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def encode_object_path(bucket: str, object_key: str) -> str:
    """Path-style resource path with every segment percent-encoded."""

    segments = [bucket, *object_key.lstrip("/").split("/")]
    return "/" + "/".join(rfc3986_encode(segment) for segment in segments)


def canonical_query_string(params: Mapping[str, str]) -> str:
    return "&".join(
        f"{rfc3986_encode(key)}={rfc3986_encode(value)}" for key, value in sorted(params.items())
    )


def derive_signing_key(secret_access_key: str, date_stamp: str, region: str, service: str = _SERVICE) -> bytes:
    k_date = _hmac(f"AWS4{secret_access_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "aws4_request")


def presign_object_url(
    config: ObjectStorageConfig,
    *,
    method: str,
    object_key: str,
    expires_seconds: int,
    now: datetime | None = None,
) -> str:
    """Return a presigned URL that authorises ``method`` on one object.

    Only the ``host`` header is signed and the payload is declared unsigned.
    """

    if expires_seconds <= 0 or expires_seconds > 7 * 24 * 3600:
        raise ValueError("expires_seconds must be between 1 and 604800")
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    amz_date = moment.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = moment.strftime("%Y%m%d")

    parsed = urlparse(config.endpoint)
    host = parsed.netloc
    canonical_uri = encode_object_path(config.bucket, object_key)
    scope = f"{date_stamp}/{config.region}/{_SERVICE}/aws4_request"
    query = canonical_query_string(
        {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{config.access_key_id}/{scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_seconds),
            "X-Amz-SignedHeaders": "host",
        }
    )
    canonical_request = "\n".join(
        [method.upper(), canonical_uri, query, f"host:{host}\n", "host", UNSIGNED_PAYLOAD]
    )
    string_to_sign = "\n".join(
        [ALGORITHM, amz_date, scope, hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()]
    )
    signing_key = derive_signing_key(config.secret_access_key, date_stamp, config.region)
    signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{parsed.scheme}://{host}{canonical_uri}?{query}&X-Amz-Signature={signature}"


class ObjectStorageClient:
    """Presign, download and check for objects in one bucket."""

    def __init__(
        self,
        config: ObjectStorageConfig,
        *,
        timeout_seconds: float = 25.0,
        download_expiry_seconds: int = 60,
        upload_expiry_seconds: int = 15 * 60,
        opener: Callable[..., Any] = urllib_request.urlopen,
    ) -> None:
        self.config = config
        self.timeout_seconds = timeout_seconds
        self.download_expiry_seconds = download_expiry_seconds
        self.upload_expiry_seconds = upload_expiry_seconds
        self._opener = opener

    def presign_download(self, object_key: str, *, expires_seconds: int | None = None) -> str:
        return presign_object_url(
            self.config,
            method="GET",
            object_key=object_key,
            expires_seconds=expires_seconds or self.download_expiry_seconds,
        )

    def presign_upload(self, object_key: str, *, expires_seconds: int | None = None) -> str:
        return presign_object_url(
            self.config,
            method="PUT",
            object_key=object_key,
            expires_seconds=expires_seconds or self.upload_expiry_seconds,
        )

    def download(self, object_key: str) -> bytes:
        url = self.presign_download(object_key)
        req = urllib_request.Request(url=url, method="GET")
        try:
            with self._opener(req, timeout=self.timeout_seconds) as resp:
                return resp.read()
        except urllib_error.HTTPError as exc:
            raise ObjectStorageError(f"Download of {object_key} failed with HTTP {exc.code}") from exc
        except (urllib_error.URLError, TimeoutError) as exc:
            raise ObjectStorageError(f"Download of {object_key} failed: {getattr(exc, 'reason', exc)}") from exc

    def exists(self, object_key: str) -> bool:
        url = presign_object_url(
            self.config,
            method="HEAD",
            object_key=object_key,
            expires_seconds=self.download_expiry_seconds,
        )
        req = urllib_request.Request(url=url, method="HEAD")
        try:
            with self._opener(req, timeout=self.timeout_seconds) as resp:
                return 200 <= resp.status < 300
        except (urllib_error.URLError, TimeoutError):
            logger.debug("object_storage.head_failed object_key=%s", object_key)
            return False


def build_object_storage_client(settings: Settings | None = None) -> ObjectStorageClient:
    settings = settings or get_settings()
    return ObjectStorageClient(
        ObjectStorageConfig.from_settings(settings),
        timeout_seconds=settings.registry_timeout_seconds,
        download_expiry_seconds=settings.object_storage_download_expiry_seconds,
        upload_expiry_seconds=settings.object_storage_upload_expiry_seconds,
    )


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
