"""Presigned upload URLs for step file uploads.

The service only builds object keys and asks an issuer to sign them; the
client uploads straight to the bucket.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import datetime, timedelta
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from workflow_hub.config import UploadConfig
from workflow_hub.errors import UploadConfigurationError, ValidationError

logger = logging.getLogger(__name__)

MIN_EXPIRES_SECONDS = 60
MAX_EXPIRES_SECONDS = 86400

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.\-]")
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


class UploadTicket(BaseModel):
    upload_url: str
    key: str
    expires_at: datetime


class UploadUrlIssuer(Protocol):
    def issue(self, *, bucket: str, key: str, content_type: str, ttl_seconds: int) -> str: ...


def sanitize_filename(file_name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", file_name)


def build_upload_key(
    *,
    organization_id: str,
    workflow_id: str,
    file_name: str,
    now: datetime,
    step_id: str | None = None,
    token: str | None = None,
) -> str:
    """``workflows/{org}/{workflow}/[{step}/]{epoch_ms}-{random8}-{file}``."""

    if token is None:
        token = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(8))
    prefix = f"workflows/{organization_id}/{workflow_id}/"
    if step_id:
        prefix += f"{step_id}/"
    return f"{prefix}{int(now.timestamp() * 1000)}-{token}-{sanitize_filename(file_name)}"


def check_expires(expires: int) -> int:
    if isinstance(expires, bool) or not isinstance(expires, int):
        raise ValidationError("Upload URL lifetime must be an integer", expires=expires)
    if not MIN_EXPIRES_SECONDS <= expires <= MAX_EXPIRES_SECONDS:
        raise ValidationError(
            f"Upload URL lifetime must be between {MIN_EXPIRES_SECONDS} and "
            f"{MAX_EXPIRES_SECONDS} seconds",
            expires=expires,
        )
    return expires


class S3UploadUrlIssuer:
    """Signs ``put_object`` requests with boto3."""

    def __init__(self, config: UploadConfig, *, client: Any | None = None) -> None:
        self._config = config
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._config.region)
        return self._client

    def issue(self, *, bucket: str, key: str, content_type: str, ttl_seconds: int) -> str:
        try:
            return self._get_client().generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise UploadConfigurationError(
                f"Could not sign upload URL for bucket {bucket!r}: {e}", bucket=bucket, key=key
            ) from e


def issue_ticket(
    issuer: UploadUrlIssuer,
    config: UploadConfig,
    *,
    key: str,
    content_type: str,
    expires: int,
    now: datetime,
) -> UploadTicket:
    if not config.bucket:
        raise UploadConfigurationError(
            "Upload bucket is not configured (set WORKFLOW_HUB_UPLOAD_BUCKET)"
        )
    url = issuer.issue(
        bucket=config.bucket, key=key, content_type=content_type, ttl_seconds=expires
    )
    logger.info("Upload URL issued", extra={"bucket": config.bucket, "key": key, "expires": expires})
    return UploadTicket(upload_url=url, key=key, expires_at=now + timedelta(seconds=expires))
