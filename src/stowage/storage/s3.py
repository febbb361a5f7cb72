"""S3-compatible storage service.

Supports:
- AWS S3
- Cloudflare R2
- DigitalOcean Spaces
- MinIO
- Any S3-compatible object storage via a custom endpoint

Configuration is validated in the constructor. A provider without a stable
public URL scheme (R2, MinIO, custom) must be given a ``public_url_template``
up front; the adapter never defers that failure to ``public_url``.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from stowage.errors import (
    BackendError,
    ConfigurationError,
    HttpError,
    NotFoundError,
    StowageError,
    UsageError,
)
from stowage.storage.base import DEFAULT_SIGNED_URL_TTL, PutOptions, StorageService

logger = logging.getLogger(__name__)

PROVIDERS = ("aws", "cloudflare_r2", "digitalocean_spaces", "minio", "custom")
DEFAULT_REGION = "us-east-1"
DEFAULT_SPACES_REGION = "nyc3"

# Providers whose public URL cannot be derived from bucket/region alone
TEMPLATE_REQUIRED = ("cloudflare_r2", "minio", "custom")

_OBJECT_READS = ("get", "head", "delete", "update_metadata")


@dataclass(frozen=True)
class Endpoint:
    """Scheme, host and port of an S3 API endpoint."""

    scheme: str
    host: str
    port: int

    @property
    def url(self) -> str:
        default_port = 443 if self.scheme == "https" else 80
        if self.port == default_port:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"

    @classmethod
    def parse(cls, endpoint: str) -> "Endpoint":
        """Parse ``scheme://host[:port]``; port defaults to 443/80 by scheme.

        Raises:
            ConfigurationError: If the URL has no scheme/host or a bad port
        """
        parts = urlsplit(endpoint)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ConfigurationError(
                "endpoint", f"endpoint must look like scheme://host[:port], got {endpoint!r}"
            )
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigurationError("endpoint", f"invalid port in endpoint {endpoint!r}") from e
        if port is None:
            port = 443 if parts.scheme == "https" else 80
        return cls(scheme=parts.scheme, host=parts.hostname, port=port)


def provider_endpoint(
    provider: str,
    region: str,
    account_id: str | None = None,
    endpoint: str | None = None,
) -> Endpoint:
    """Return the API endpoint for a provider preset."""
    if provider == "aws":
        return Endpoint("https", f"s3.{region}.amazonaws.com", 443)
    if provider == "digitalocean_spaces":
        return Endpoint("https", f"{region}.digitaloceanspaces.com", 443)
    if provider == "cloudflare_r2":
        if not account_id:
            raise ConfigurationError("account_id", "account_id is required for cloudflare_r2")
        return Endpoint("https", f"{account_id}.r2.cloudflarestorage.com", 443)
    if provider in ("minio", "custom"):
        if not endpoint:
            raise ConfigurationError("endpoint", f"endpoint is required for provider {provider}")
        return Endpoint.parse(endpoint)
    raise ConfigurationError(
        "provider", f"Unsupported provider {provider!r}. Supported: {', '.join(PROVIDERS)}"
    )


def _required(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(field)
    return value


def _optional_timeout(value: Any, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(field, f"{field} must be a positive number of seconds")
    return float(value)


class S3StorageService(StorageService):
    """S3-compatible storage implementation.

    Uses aioboto3; one client context is opened per operation.
    """

    kind = "s3"

    def __init__(
        self,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        region: str | None = None,
        provider: str = "aws",
        account_id: str | None = None,
        endpoint: str | None = None,
        public_url_template: str | None = None,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        name: str = "s3",
    ):
        """Initialize S3 storage.

        Args:
            bucket: Bucket name
            access_key_id: Access key
            secret_access_key: Secret key
            region: Region (default us-east-1, nyc3 for DigitalOcean Spaces)
            provider: One of aws, cloudflare_r2, digitalocean_spaces, minio, custom
            account_id: Cloudflare account id (cloudflare_r2 only)
            endpoint: scheme://host[:port] (minio and custom only)
            public_url_template: URL with a ``{key}`` placeholder
            connect_timeout: Socket connect timeout in seconds
            read_timeout: Socket read timeout in seconds
            name: Registered service name

        Raises:
            ConfigurationError: On any missing or invalid field
        """
        super().__init__(name)
        self.bucket = _required(bucket, "bucket")
        access_key_id = _required(access_key_id, "access_key_id")
        secret_access_key = _required(secret_access_key, "secret_access_key")

        if provider not in PROVIDERS:
            raise ConfigurationError(
                "provider", f"Unsupported provider {provider!r}. Supported: {', '.join(PROVIDERS)}"
            )
        self.provider = provider

        if region is not None and (not isinstance(region, str) or not region):
            raise ConfigurationError("region")
        if region is None:
            region = DEFAULT_SPACES_REGION if provider == "digitalocean_spaces" else DEFAULT_REGION
        self.region = region

        self.endpoint = provider_endpoint(provider, region, account_id, endpoint)

        if public_url_template is not None:
            if not isinstance(public_url_template, str) or "{key}" not in public_url_template:
                raise ConfigurationError(
                    "public_url_template", "public_url_template must contain a {key} placeholder"
                )
        elif provider in TEMPLATE_REQUIRED:
            raise ConfigurationError(
                "public_url_template",
                f"Provider {provider} has no stable public URL; public_url_template is required",
            )
        self.public_url_template = public_url_template

        self.connect_timeout = _optional_timeout(connect_timeout, "connect_timeout")
        self.read_timeout = _optional_timeout(read_timeout, "read_timeout")

        timeouts: dict[str, float] = {}
        if self.connect_timeout is not None:
            timeouts["connect_timeout"] = self.connect_timeout
        if self.read_timeout is not None:
            timeouts["read_timeout"] = self.read_timeout
        # Retries are a caller concern; the adapter makes exactly one attempt
        self._client_config = BotoConfig(retries={"total_max_attempts": 1}, **timeouts)

        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    @classmethod
    def from_config(cls, name: str, config: dict[str, Any]) -> "S3StorageService":
        """Build from a ``ServiceConfig.config`` mapping."""
        return cls(
            bucket=config.get("bucket"),  # type: ignore[arg-type]
            access_key_id=config.get("access_key_id"),  # type: ignore[arg-type]
            secret_access_key=config.get("secret_access_key"),  # type: ignore[arg-type]
            region=config.get("region"),
            provider=config.get("provider", "aws"),
            account_id=config.get("account_id"),
            endpoint=config.get("endpoint"),
            public_url_template=config.get("public_url_template"),
            connect_timeout=config.get("connect_timeout"),
            read_timeout=config.get("read_timeout"),
            name=name,
        )

    def _client(self) -> AbstractAsyncContextManager[Any]:
        return cast(
            AbstractAsyncContextManager[Any],
            self._session.client(
                "s3",
                endpoint_url=self.endpoint.url,
                config=self._client_config,
            ),
        )

    def _translate(self, error: Exception, key: str, operation: str) -> StowageError:
        """Map botocore failures onto the error taxonomy."""
        if isinstance(error, ClientError):
            response = error.response
            status = response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            code = str(response.get("Error", {}).get("Code", ""))
            # Only object-level calls report a missing object
            missing = status == 404 or code in ("404", "NoSuchKey", "NotFound")
            if missing and operation in _OBJECT_READS:
                return NotFoundError(key)
            body = str(response.get("Error", {}).get("Message") or code)
            return HttpError(int(status), body)
        return BackendError(f"s3 {operation} failed for {key}: {error}")

    @staticmethod
    def _normalize_metadata(metadata: dict[str, Any]) -> dict[str, str]:
        return {str(k).lower().replace("_", "-"): str(v) for k, v in metadata.items()}

    async def put(self, key: str, content: bytes, options: PutOptions | None = None) -> None:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": content}
        if options is not None:
            if options.content_type:
                params["ContentType"] = options.content_type
            if options.acl:
                params["ACL"] = options.acl
            if options.metadata:
                params["Metadata"] = self._normalize_metadata(options.metadata)

        try:
            async with self._client() as s3:
                await s3.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key, "put") from e

        logger.debug(f"Stored {len(content)} bytes at s3://{self.bucket}/{key}")

    async def get(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    data = await stream.read()
                    return cast(bytes, data)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key, "get") from e

    async def head(self, key: str) -> dict[str, Any]:
        """Return object attributes without downloading it."""
        try:
            async with self._client() as s3:
                response = await s3.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key, "head") from e
        return {
            "size": response.get("ContentLength"),
            "content_type": response.get("ContentType"),
            "etag": response.get("ETag"),
            "last_modified": response.get("LastModified"),
            "metadata": response.get("Metadata") or {},
        }

    async def delete(self, key: str) -> None:
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            error = self._translate(e, key, "delete")
            if isinstance(error, NotFoundError):
                logger.debug(f"Delete of missing key {key} treated as success")
                return
            raise error from e

    async def exists(self, key: str) -> bool:
        try:
            await self.head(key)
            return True
        except StowageError:
            return False

    def public_url(self, key: str) -> str:
        if self.public_url_template is not None:
            return self.public_url_template.replace("{key}", key)
        if self.provider == "digitalocean_spaces":
            return f"https://{self.bucket}.{self.region}.digitaloceanspaces.com/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def signed_url(self, key: str, expires_in: int | None = None) -> str:
        """Generate a presigned GET URL.

        Args:
            key: Object key
            expires_in: URL expiration time in seconds (default 1 hour)
        """
        ttl = DEFAULT_SIGNED_URL_TTL if expires_in is None else expires_in
        if ttl <= 0:
            raise UsageError("expires_in must be positive")
        try:
            async with self._client() as s3:
                url = await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=ttl,
                )
                return cast(str, url)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key, "presign") from e

    async def update_metadata(
        self,
        key: str,
        metadata: dict[str, Any],
        content_type: str | None = None,
    ) -> None:
        """Replace object metadata by copying the object onto itself."""
        if content_type is None:
            content_type = (await self.head(key)).get("content_type")

        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "CopySource": {"Bucket": self.bucket, "Key": key},
            "Metadata": self._normalize_metadata(metadata),
            "MetadataDirective": "REPLACE",
        }
        if content_type:
            params["ContentType"] = content_type

        try:
            async with self._client() as s3:
                await s3.copy_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key, "update_metadata") from e

    async def list_keys(self, prefix: str = "") -> list[str]:
        """List object keys under prefix."""
        keys: list[str] = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    keys.extend(item["Key"] for item in page.get("Contents", []))
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, prefix, "list") from e
        return keys
