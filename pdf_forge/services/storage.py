"""
Storage uploads for finished PDFs.

Two providers: ``s3`` (any S3-compatible endpoint, signed with AWS
Signature Version 4 when credentials are given) and ``local`` (a directory
under LOCAL_STORAGE_ROOT).
"""

import asyncio
import hashlib
import hmac
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote, urlparse

import httpx

from pdf_forge.models.schemas import StorageConfig, StorageResult
from pdf_forge.utils.error_handler import InvalidRequestError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/pdf"
DEFAULT_REGION = "us-east-1"
PROVIDERS = ("s3", "local")


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def signing_key(secret_key: str, date_stamp: str, region: str, service: str = "s3") -> bytes:
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, "aws4_request")


def sign_s3_request(
    method: str,
    url: str,
    headers: Dict[str, str],
    payload: bytes,
    access_key_id: str,
    secret_access_key: str,
    region: str,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """
    Add AWS SigV4 headers to ``headers`` and return it.

    Signs ``host``, ``content-type`` and every ``x-amz-*`` header.
    """
    now = now or datetime.now(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")
    payload_hash = _sha256_hex(payload)

    headers["x-amz-date"] = amz_date
    headers["x-amz-content-sha256"] = payload_hash

    parsed = urlparse(url)
    signed = {"host": parsed.netloc}
    for key, value in headers.items():
        lower = key.lower()
        if lower == "content-type" or lower.startswith("x-amz-"):
            signed[lower] = " ".join(str(value).split())

    names = sorted(signed)
    canonical_headers = "".join(f"{name}:{signed[name]}\n" for name in names)
    signed_headers = ";".join(names)

    canonical_request = "\n".join([
        method,
        parsed.path or "/",
        parsed.query,
        canonical_headers,
        signed_headers,
        payload_hash,
    ])

    credential_scope = f"{date_stamp}/{region}/s3/aws4_request"
    string_to_sign = "\n".join([
        "AWS4-HMAC-SHA256",
        amz_date,
        credential_scope,
        _sha256_hex(canonical_request.encode("utf-8")),
    ])
    signature = hmac.new(
        signing_key(secret_access_key, date_stamp, region),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    headers["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key_id}/{credential_scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return headers


def object_key(config: StorageConfig, default_filename: Optional[str] = None) -> str:
    """Object path with a leading slash, e.g. ``/reports/2026/q1.pdf``."""
    parts = [part.strip("/") for part in (config.path, config.filename or default_filename or "") if part]
    key = "/".join(part for part in parts if part)
    return "/" + key


class StorageService:
    """Uploads PDFs to the provider named in a StorageConfig."""

    def __init__(
        self,
        local_root: str = "data/storage",
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.local_root = local_root
        self.timeout = timeout
        self.transport = transport

    async def upload(
        self,
        config: StorageConfig,
        data: bytes,
        content_type: Optional[str] = None,
        default_filename: Optional[str] = None,
    ) -> StorageResult:
        """
        Upload ``data`` and describe where it went.

        Raises:
            InvalidRequestError: If the provider is unknown or the path is unsafe
            StorageError: If the upload itself fails
        """
        provider = (config.provider or "").lower()
        if provider == "s3":
            return await self._upload_s3(config, data, content_type, default_filename)
        if provider == "local":
            return await asyncio.to_thread(self._upload_local, config, data, default_filename)
        raise InvalidRequestError(
            f"Unsupported storage provider: {config.provider}. Supported: {', '.join(PROVIDERS)}",
            error_code="invalid_storage_provider"
        )

    async def _upload_s3(
        self,
        config: StorageConfig,
        data: bytes,
        content_type: Optional[str],
        default_filename: Optional[str],
    ) -> StorageResult:
        if not config.bucket and not config.endpoint:
            raise InvalidRequestError("S3 storage requires a bucket", error_code="invalid_storage_config")

        region = config.region or DEFAULT_REGION
        endpoint = (config.endpoint or f"https://{config.bucket}.s3.{region}.amazonaws.com").rstrip("/")
        path = object_key(config, default_filename)
        url = endpoint + quote(path, safe="/~")

        headers = {"Content-Type": content_type or config.content_type or DEFAULT_CONTENT_TYPE}
        if config.acl:
            headers["x-amz-acl"] = config.acl
        for key, value in config.metadata.items():
            headers[f"x-amz-meta-{key}"] = value

        if config.access_key_id and config.secret_access_key:
            sign_s3_request("PUT", url, headers, data, config.access_key_id, config.secret_access_key, region)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.put(url, content=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"S3 upload to {url} failed: {str(e)}")
            raise StorageError(f"Upload failed: {str(e)}")

        if response.status_code >= 300:
            raise StorageError(
                f"Upload failed with status {response.status_code}: {response.text}",
                details={"status": response.status_code}
            )

        logger.info(f"File uploaded to S3 - bucket: {config.bucket}, path: {path}, size: {len(data)}")
        return StorageResult(provider="s3", bucket=config.bucket, path=path, url=url, size=len(data))

    def _upload_local(self, config: StorageConfig, data: bytes, default_filename: Optional[str]) -> StorageResult:
        root = os.path.realpath(self.local_root)
        base = os.path.realpath(os.path.join(root, config.bucket.strip("/")))
        full_path = os.path.realpath(os.path.join(base, object_key(config, default_filename).lstrip("/")))

        if os.path.commonpath([root, full_path]) != root or full_path == base:
            raise InvalidRequestError("Storage path escapes the storage root", error_code="invalid_storage_path")

        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to write {full_path}: {str(e)}")
            raise StorageError(f"Failed to write file: {str(e)}")

        logger.info(f"File saved locally - path: {full_path}, size: {len(data)}")
        return StorageResult(
            provider="local",
            bucket=config.bucket or "",
            path=full_path,
            url=f"file://{full_path}",
            size=len(data),
        )
