# tests/conftest.py
"""
Pytest configuration and fixtures for the s3ferry test suites.

This module sets up the testing environment, including:
- An in-memory `FakeS3Client` that the unit tests run the engine against.
- Spinning up Docker containers for source and destination S3 services (MinIO),
  each with its own credentials so end-to-end copies really cross accounts.
- Creating and cleaning up isolated buckets for each end-to-end test and
  exporting the `AWS_*` and `DST_AWS_*` variables the application reads.
"""

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional, Set

import boto3
import pytest
import pytest_asyncio
import requests
from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from requests.exceptions import ConnectionError

from s3ferry.config import AppConfig, Config, S3Config

# --- Constants ---
S3_REGION: str = "us-east-1"
SOURCE_CREDENTIALS: Dict[str, str] = {
    "aws_access_key_id": "source-key",
    "aws_secret_access_key": "source-secret",
}
DEST_CREDENTIALS: Dict[str, str] = {
    "aws_access_key_id": "dest-key",
    "aws_secret_access_key": "dest-secret",
}


# --- Storage Fakes ---
def client_error(code: str, operation: str) -> ClientError:
    """
    Build a botocore `ClientError` as the service would raise it.

    Args:
        code (str): The S3 error code, e.g. "NoSuchKey".
        operation (str): The operation name, e.g. "GetObject".

    Returns:
        ClientError: The error.
    """
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeStreamingBody:
    """A single-use body stream that records how it was consumed."""

    def __init__(self, data: bytes, fail_read: bool = False) -> None:
        self._data: bytes = data
        self._offset: int = 0
        self._fail_read: bool = fail_read
        self.read_count: int = 0
        self.closed: bool = False

    async def __aenter__(self) -> "FakeStreamingBody":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.closed = True

    async def read(self, amt: Optional[int] = None) -> bytes:
        self.read_count += 1
        if self._fail_read:
            raise ConnectionResetError("Connection reset while reading body.")
        if amt is None:
            if self._offset > 0 or self.read_count > 1:
                raise RuntimeError("Body stream read more than once.")
            self._offset = len(self._data)
            return self._data
        chunk: bytes = self._data[self._offset : self._offset + amt]
        self._offset += len(chunk)
        return chunk


@dataclass
class StoredObject:
    """An object held by `FakeS3Client`."""

    body: bytes
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PendingUpload:
    """An unfinished multipart upload held by `FakeS3Client`."""

    bucket: str
    key: str
    attributes: Dict[str, Any]
    parts: Dict[int, bytes] = field(default_factory=dict)


class FakeS3Client:
    """
    In-memory S3 client with paged listings and injectable failures.

    Implements the calls the engine makes (`list_objects_v2`, `get_object`,
    `put_object` and the multipart upload calls) with the same request and
    response shapes.

    Attributes:
        buckets: Objects by bucket and key.
        uploads: Multipart uploads that were neither completed nor aborted.
        page_size: Default `MaxKeys` for listings.
        latency_s: Delay applied to every GET and PUT.
        fail_list_on_page: 1-based list call number that raises.
        fail_get_keys: Keys whose GET raises.
        fail_read_keys: Keys whose body read raises.
        fail_put_keys: Destination keys whose PUT (or part upload) raises.
        truncate_without_token: Return truncated pages with no token.
    """

    def __init__(self, page_size: int = 1000, latency_s: float = 0.0) -> None:
        self.buckets: Dict[str, Dict[str, StoredObject]] = defaultdict(dict)
        self.uploads: Dict[str, PendingUpload] = {}
        self.upload_count: int = 0
        self.page_size: int = page_size
        self.latency_s: float = latency_s
        self.fail_list_on_page: Optional[int] = None
        self.fail_get_keys: Set[str] = set()
        self.fail_read_keys: Set[str] = set()
        self.fail_put_keys: Set[str] = set()
        self.truncate_without_token: bool = False
        self.list_calls: List[Dict[str, Any]] = []
        self.get_calls: List[str] = []
        self.put_calls: List[str] = []
        self.part_calls: List[int] = []
        self.aborted: List[str] = []
        self.bodies: List[FakeStreamingBody] = []
        self.in_flight: int = 0
        self.peak_in_flight: int = 0

    def add(self, bucket: str, key: str, body: bytes, **attributes: Any) -> None:
        self.buckets[bucket][key] = StoredObject(body, dict(attributes))

    def keys(self, bucket: str) -> List[str]:
        return sorted(self.buckets[bucket])

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        ContinuationToken: Optional[str] = None,
        MaxKeys: Optional[int] = None,
    ) -> Dict[str, Any]:
        self.list_calls.append(
            {"Prefix": Prefix, "ContinuationToken": ContinuationToken, "MaxKeys": MaxKeys}
        )
        if self.fail_list_on_page == len(self.list_calls):
            raise client_error("InternalError", "ListObjectsV2")

        matching: List[str] = [k for k in self.keys(Bucket) if k.startswith(Prefix)]
        start: int = int(ContinuationToken) if ContinuationToken else 0
        size: int = MaxKeys or self.page_size
        chunk: List[str] = matching[start : start + size]
        truncated: bool = start + size < len(matching)

        response: Dict[str, Any] = {"KeyCount": len(chunk), "IsTruncated": truncated}
        if chunk:
            response["Contents"] = [
                {"Key": key, "Size": len(self.buckets[Bucket][key].body)}
                for key in chunk
            ]
        if truncated and not self.truncate_without_token:
            response["NextContinuationToken"] = str(start + size)
        return response

    async def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.get_calls.append(Key)
        await asyncio.sleep(self.latency_s)
        if Key in self.fail_get_keys or Key not in self.buckets[Bucket]:
            raise client_error("NoSuchKey", "GetObject")
        stored: StoredObject = self.buckets[Bucket][Key]
        body: FakeStreamingBody = FakeStreamingBody(
            stored.body, fail_read=Key in self.fail_read_keys
        )
        self.bodies.append(body)
        return {"Body": body, "ContentLength": len(stored.body), **stored.attributes}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentLength: Optional[int] = None,
        **attributes: Any,
    ) -> Dict[str, Any]:
        self.put_calls.append(Key)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency_s)
            if Key in self.fail_put_keys:
                raise client_error("AccessDenied", "PutObject")
            if ContentLength is not None and ContentLength != len(Body):
                raise client_error("IncompleteBody", "PutObject")
            self.buckets[Bucket][Key] = StoredObject(bytes(Body), dict(attributes))
        finally:
            self.in_flight -= 1
        return {"ETag": '"fake"'}

    async def create_multipart_upload(
        self, Bucket: str, Key: str, **attributes: Any
    ) -> Dict[str, Any]:
        self.upload_count += 1
        upload_id: str = f"upload-{self.upload_count}"
        self.uploads[upload_id] = PendingUpload(Bucket, Key, dict(attributes))
        return {"Bucket": Bucket, "Key": Key, "UploadId": upload_id}

    async def upload_part(
        self,
        Bucket: str,
        Key: str,
        UploadId: str,
        PartNumber: int,
        Body: bytes,
        ContentLength: Optional[int] = None,
    ) -> Dict[str, Any]:
        self.part_calls.append(PartNumber)
        await asyncio.sleep(self.latency_s)
        if Key in self.fail_put_keys:
            raise client_error("AccessDenied", "UploadPart")
        if UploadId not in self.uploads:
            raise client_error("NoSuchUpload", "UploadPart")
        self.uploads[UploadId].parts[PartNumber] = bytes(Body)
        return {"ETag": f'"part-{PartNumber}"'}

    async def complete_multipart_upload(
        self,
        Bucket: str,
        Key: str,
        UploadId: str,
        MultipartUpload: Dict[str, Any],
    ) -> Dict[str, Any]:
        if UploadId not in self.uploads:
            raise client_error("NoSuchUpload", "CompleteMultipartUpload")
        upload = self.uploads.pop(UploadId)
        numbers: List[int] = [part["PartNumber"] for part in MultipartUpload["Parts"]]
        if numbers != sorted(upload.parts):
            raise client_error("InvalidPart", "CompleteMultipartUpload")
        body: bytes = b"".join(upload.parts[number] for number in numbers)
        self.buckets[Bucket][Key] = StoredObject(body, upload.attributes)
        return {"ETag": '"fake-multipart"'}

    async def abort_multipart_upload(
        self, Bucket: str, Key: str, UploadId: str
    ) -> Dict[str, Any]:
        self.uploads.pop(UploadId, None)
        self.aborted.append(UploadId)
        return {}


@pytest.fixture(scope="function")
def source_client() -> FakeS3Client:
    """Provide an empty fake client for the source side, two keys per page."""
    return FakeS3Client(page_size=2)


@pytest.fixture(scope="function")
def dest_client() -> FakeS3Client:
    """Provide an empty fake client for the destination side."""
    return FakeS3Client()


@pytest.fixture(scope="function")
def test_config() -> Config:
    """
    Provide a Config object with static credentials and no progress display.

    Returns:
        Config: A Config instance for use in tests.
    """
    return Config(
        source=S3Config(access_key_id="src-key", secret_access_key="src-secret"),
        destination=S3Config(access_key_id="dst-key", secret_access_key="dst-secret"),
        app=AppConfig(max_concurrency=4, show_progress=False),
    )


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration objects.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    return "s3ferry-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


def _service(docker_ip: str, docker_services: Any, name: str) -> str:
    port: int = docker_services.port_for(name, 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return api_url



@pytest.fixture(scope="session")
def source_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the source S3 service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Client keyword arguments for the source service.
    """
    return {
        "endpoint_url": _service(docker_ip, docker_services, "minio-source"),
        "region_name": S3_REGION,
        **SOURCE_CREDENTIALS,
    }


@pytest.fixture(scope="session")
def dest_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the destination S3 service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Client keyword arguments for the destination service.
    """
    return {
        "endpoint_url": _service(docker_ip, docker_services, "minio-destination"),
        "region_name": S3_REGION,
        **DEST_CREDENTIALS,
    }


@pytest_asyncio.fixture(scope="function")
async def s3_buckets(
    source_s3_service: Dict[str, Any],
    dest_s3_service: Dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[Dict[str, str], None]:
    """
    Create unique, isolated buckets for a single test function.

    Sets the environment variables the application's Config reads and
    guarantees cleanup of buckets and their contents after the test.

    Args:
        source_s3_service (Dict[str, Any]): Connection details for the source S3.
        dest_s3_service (Dict[str, Any]): Connection details for the destination S3.
        monkeypatch (pytest.MonkeyPatch): Pytest fixture to set variables.

    Yield:
        AsyncGenerator[Dict[str, str], None]: The source and destination
            bucket names.
    """
    session: AioSession = get_session()
    suffix: str = f"test-bucket-{uuid.uuid4()}"
    source_bucket: str = f"source-{suffix}"
    dest_bucket: str = f"dest-{suffix}"

    for prefix, service in (("AWS", source_s3_service), ("DST_AWS", dest_s3_service)):
        monkeypatch.setenv(f"{prefix}_ENDPOINT_URL", service["endpoint_url"])
        monkeypatch.setenv(f"{prefix}_ACCESS_KEY_ID", service["aws_access_key_id"])
        monkeypatch.setenv(
            f"{prefix}_SECRET_ACCESS_KEY", service["aws_secret_access_key"]
        )
        monkeypatch.setenv(f"{prefix}_REGION", S3_REGION)

    async with (
        session.create_client("s3", **source_s3_service) as s3_source,
        session.create_client("s3", **dest_s3_service) as s3_dest,
    ):
        await s3_source.create_bucket(Bucket=source_bucket)
        await s3_dest.create_bucket(Bucket=dest_bucket)

    yield {"source": source_bucket, "destination": dest_bucket}

    # Cleanup: boto3 is simpler for synchronous, recursive delete
    boto_config: BotoConfig = BotoConfig(
        retries={"max_attempts": 0, "mode": "standard"}
    )
    for service, bucket in [
        (source_s3_service, source_bucket),
        (dest_s3_service, dest_bucket),
    ]:
        try:
            bucket_obj = boto3.resource("s3", **service, config=boto_config).Bucket(
                bucket
            )
            bucket_obj.objects.all().delete()
            bucket_obj.delete()
        except ClientError as e:
            if e.response["Error"]["Code"] != "NoSuchBucket":
                raise
