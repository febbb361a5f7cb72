"""Unit tests for the S3-compatible storage backend."""

from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from stowage.errors import (
    BackendError,
    ConfigurationError,
    HttpError,
    NotFoundError,
)
from stowage.storage.base import PutOptions
from stowage.storage.s3 import Endpoint, S3StorageService

CREDENTIALS = {"bucket": "media", "access_key_id": "AKIA", "secret_access_key": "secret"}


def client_error(status: int, code: str, message: str = "", operation: str = "Op") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def __aenter__(self) -> "FakeBody":
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    async def read(self) -> bytes:
        return self._data


class FakePaginator:
    def __init__(self, keys: list[str]) -> None:
        self._keys = keys

    async def paginate(self, Bucket: str, Prefix: str = ""):
        matching = [k for k in self._keys if k.startswith(Prefix)]
        # Two pages to exercise iteration
        yield {"Contents": [{"Key": k} for k in matching[:1]]}
        yield {"Contents": [{"Key": k} for k in matching[1:]]}


class FakeS3Client:
    """In-process stand-in for an aioboto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    async def __aenter__(self) -> "FakeS3Client":
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    def _record(self, operation: str, params: dict[str, Any]) -> None:
        self.calls.append((operation, params))
        if self.fail_with is not None:
            raise self.fail_with

    def _missing(self, operation: str) -> ClientError:
        return client_error(404, "NoSuchKey", "The specified key does not exist.", operation)

    async def put_object(self, **params: Any) -> dict[str, Any]:
        self._record("put_object", params)
        self.objects[params["Key"]] = {
            "Body": params["Body"],
            "ContentType": params.get("ContentType", "binary/octet-stream"),
            "Metadata": params.get("Metadata", {}),
        }
        return {}

    async def get_object(self, **params: Any) -> dict[str, Any]:
        self._record("get_object", params)
        if params["Key"] not in self.objects:
            raise self._missing("GetObject")
        return {"Body": FakeBody(self.objects[params["Key"]]["Body"])}

    async def head_object(self, **params: Any) -> dict[str, Any]:
        self._record("head_object", params)
        obj = self.objects.get(params["Key"])
        if obj is None:
            raise client_error(404, "404", "Not Found", "HeadObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "ETag": '"etag"',
            "Metadata": obj["Metadata"],
        }

    async def delete_object(self, **params: Any) -> dict[str, Any]:
        self._record("delete_object", params)
        if params["Key"] not in self.objects:
            raise self._missing("DeleteObject")
        del self.objects[params["Key"]]
        return {}

    async def copy_object(self, **params: Any) -> dict[str, Any]:
        self._record("copy_object", params)
        obj = self.objects[params["CopySource"]["Key"]]
        obj["Metadata"] = params["Metadata"]
        obj["ContentType"] = params.get("ContentType", obj["ContentType"])
        return {}

    async def generate_presigned_url(
        self, operation: str, Params: dict[str, Any], ExpiresIn: int
    ) -> str:
        self._record("generate_presigned_url", {"Params": Params, "ExpiresIn": ExpiresIn})
        return f"https://signed.example/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(sorted(self.objects))


@pytest.fixture
def fake_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_service(monkeypatch: pytest.MonkeyPatch, fake_client: FakeS3Client) -> S3StorageService:
    service = S3StorageService(**CREDENTIALS, region="eu-west-1", name="s3-prod")
    monkeypatch.setattr(service, "_client", lambda: fake_client)
    return service


class TestConstruction:
    """Configuration errors surface from the constructor."""

    @pytest.mark.parametrize("missing", ["bucket", "access_key_id", "secret_access_key"])
    def test_required_fields(self, missing: str) -> None:
        config = {**CREDENTIALS, missing: None}
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService.from_config("s3", config)
        assert exc_info.value.field == missing

    def test_minio_without_template_fails_fast(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService.from_config(
                "minio", {**CREDENTIALS, "provider": "minio", "endpoint": "http://localhost:9000"}
            )
        assert exc_info.value.field == "public_url_template"

    def test_minio_requires_endpoint(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService.from_config(
                "minio",
                {**CREDENTIALS, "provider": "minio", "public_url_template": "http://cdn/{key}"},
            )
        assert exc_info.value.field == "endpoint"

    def test_r2_requires_account_id(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService(
                **CREDENTIALS, provider="cloudflare_r2", public_url_template="https://cdn/{key}"
            )
        assert exc_info.value.field == "account_id"

    def test_unknown_provider(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService(**CREDENTIALS, provider="gcs")
        assert exc_info.value.field == "provider"

    def test_template_needs_placeholder(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService(**CREDENTIALS, public_url_template="https://cdn.example.com/")
        assert exc_info.value.field == "public_url_template"

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            S3StorageService(**CREDENTIALS, connect_timeout=0)
        assert exc_info.value.field == "connect_timeout"

    def test_timeouts_reach_client_config(self) -> None:
        service = S3StorageService(**CREDENTIALS, connect_timeout=2, read_timeout=10)
        assert service.connect_timeout == 2.0
        assert service.read_timeout == 10.0


class TestEndpoints:
    """Provider presets and custom endpoint parsing."""

    def test_aws_default_region(self) -> None:
        service = S3StorageService(**CREDENTIALS)
        assert service.region == "us-east-1"
        assert service.endpoint.url == "https://s3.us-east-1.amazonaws.com"

    def test_digitalocean_default_region(self) -> None:
        service = S3StorageService(**CREDENTIALS, provider="digitalocean_spaces")
        assert service.region == "nyc3"
        assert service.endpoint.url == "https://nyc3.digitaloceanspaces.com"

    def test_r2_endpoint(self) -> None:
        service = S3StorageService(
            **CREDENTIALS,
            provider="cloudflare_r2",
            account_id="abc123",
            public_url_template="https://pub.example.com/{key}",
        )
        assert service.endpoint.url == "https://abc123.r2.cloudflarestorage.com"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("http://localhost:9000", Endpoint("http", "localhost", 9000)),
            ("https://minio.internal", Endpoint("https", "minio.internal", 443)),
            ("http://minio.internal", Endpoint("http", "minio.internal", 80)),
        ],
    )
    def test_parse_custom_endpoint(self, raw: str, expected: Endpoint) -> None:
        assert Endpoint.parse(raw) == expected

    @pytest.mark.parametrize("raw", ["localhost:9000", "ftp://host", "http://host:notaport"])
    def test_parse_invalid_endpoint(self, raw: str) -> None:
        with pytest.raises(ConfigurationError):
            Endpoint.parse(raw)

    def test_endpoint_url_keeps_non_default_port(self) -> None:
        assert Endpoint("http", "localhost", 9000).url == "http://localhost:9000"


class TestPublicUrl:
    """Public URLs are provider-specific or template-driven."""

    def test_aws_virtual_hosted(self, s3_service: S3StorageService) -> None:
        assert s3_service.public_url("a.png") == "https://media.s3.eu-west-1.amazonaws.com/a.png"

    def test_digitalocean(self) -> None:
        service = S3StorageService(**CREDENTIALS, provider="digitalocean_spaces", region="ams3")
        assert service.public_url("a.png") == "https://media.ams3.digitaloceanspaces.com/a.png"

    def test_template_substituted_verbatim(self) -> None:
        service = S3StorageService(
            **CREDENTIALS,
            provider="minio",
            endpoint="http://localhost:9000",
            public_url_template="http://localhost:9000/media/{key}",
        )
        assert service.public_url("dir/a b.png") == "http://localhost:9000/media/dir/a b.png"


class TestObjectOperations:
    """Test operations against the fake client."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, s3_service: S3StorageService, fake_client: FakeS3Client) -> None:
        await s3_service.put(
            "k.txt",
            b"hello",
            PutOptions(content_type="text/plain", acl="public-read", metadata={"Owner_Id": 7}),
        )
        operation, params = fake_client.calls[0]
        assert operation == "put_object"
        assert params["Bucket"] == "media"
        assert params["ContentType"] == "text/plain"
        assert params["ACL"] == "public-read"
        assert params["Metadata"] == {"owner-id": "7"}
        assert await s3_service.get("k.txt") == b"hello"

    @pytest.mark.asyncio
    async def test_get_404_is_not_found(self, s3_service: S3StorageService) -> None:
        with pytest.raises(NotFoundError):
            await s3_service.get("missing.txt")

    @pytest.mark.asyncio
    async def test_other_status_is_http_error(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        fake_client.fail_with = client_error(503, "SlowDown", "Please reduce your request rate.")
        with pytest.raises(HttpError) as exc_info:
            await s3_service.get("k.txt")
        assert exc_info.value.status == 503
        assert exc_info.value.body == "Please reduce your request rate."
        assert exc_info.value.to_dict()["reason"] == "http_error"

    @pytest.mark.asyncio
    async def test_put_to_missing_bucket_is_http_error(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        fake_client.fail_with = client_error(404, "NoSuchBucket", "The bucket does not exist")
        with pytest.raises(HttpError) as exc_info:
            await s3_service.put("k.txt", b"x")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_transport_failure_is_backend_error(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        fake_client.fail_with = EndpointConnectionError(endpoint_url="https://s3.example")
        with pytest.raises(BackendError) as exc_info:
            await s3_service.put("k.txt", b"x")
        assert not isinstance(exc_info.value, HttpError)

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        await s3_service.put("k.txt", b"x")
        await s3_service.delete("k.txt")
        await s3_service.delete("k.txt")
        assert "k.txt" not in fake_client.objects

    @pytest.mark.asyncio
    async def test_exists_never_raises(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        await s3_service.put("k.txt", b"x")
        assert await s3_service.exists("k.txt")
        assert not await s3_service.exists("missing.txt")
        fake_client.fail_with = client_error(500, "InternalError")
        assert not await s3_service.exists("k.txt")

    @pytest.mark.asyncio
    async def test_head(self, s3_service: S3StorageService) -> None:
        await s3_service.put("k.txt", b"hello", PutOptions(content_type="text/plain"))
        head = await s3_service.head("k.txt")
        assert head["size"] == 5
        assert head["content_type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_update_metadata_copies_in_place(
        self, s3_service: S3StorageService, fake_client: FakeS3Client
    ) -> None:
        await s3_service.put("k.txt", b"hello", PutOptions(content_type="text/plain"))
        await s3_service.update_metadata("k.txt", {"analyzed": True})
        operation, params = fake_client.calls[-1]
        assert operation == "copy_object"
        assert params["MetadataDirective"] == "REPLACE"
        assert params["CopySource"] == {"Bucket": "media", "Key": "k.txt"}
        assert params["ContentType"] == "text/plain"
        assert fake_client.objects["k.txt"]["Metadata"] == {"analyzed": "True"}

    @pytest.mark.asyncio
    async def test_update_metadata_of_missing_object(self, s3_service: S3StorageService) -> None:
        with pytest.raises(NotFoundError):
            await s3_service.update_metadata("missing.txt", {})

    @pytest.mark.asyncio
    async def test_signed_url(self, s3_service: S3StorageService) -> None:
        assert (await s3_service.signed_url("k.txt")).endswith("X-Amz-Expires=3600")
        assert (await s3_service.signed_url("k.txt", expires_in=60)).endswith("X-Amz-Expires=60")

    @pytest.mark.asyncio
    async def test_list_keys(self, s3_service: S3StorageService) -> None:
        for key in ("variants/a/1", "variants/a/2", "other"):
            await s3_service.put(key, b"x")
        assert await s3_service.list_keys("variants/") == ["variants/a/1", "variants/a/2"]
