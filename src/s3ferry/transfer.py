# src/s3ferry/transfer.py
"""
Defines the single-object transfer task and its outcomes.

A transfer reads one object from the source bucket and writes it to the
destination bucket together with its content headers and user metadata.
Failures are never raised out of a transfer; they are returned as a
`TransferFailure` that records which side of the copy went wrong.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

from s3ferry.config import DEFAULT_MULTIPART_THRESHOLD, DEFAULT_PART_SIZE
from s3ferry.exceptions import GetError, PutError, TransferError
from s3ferry.keys import KeyMapping

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import GetObjectOutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

# Response headers carried over verbatim from the GET to the PUT.
COPIED_ATTRIBUTES: Tuple[str, ...] = (
    "ContentType",
    "ContentEncoding",
    "ContentDisposition",
    "ContentLanguage",
    "Metadata",
)


class TransferStage(Enum):
    """The side of a copy on which a transfer failed."""

    GET = "get"
    PUT = "put"


@dataclass(frozen=True)
class TransferSuccess:
    """
    A completed object copy.

    Attributes:
        relative_key (str): The key relative to the source prefix.
        bytes_transferred (int): The object's content length.
        source_key (str): The full source key.
        destination_key (str): The full destination key.
    """

    relative_key: str
    bytes_transferred: int
    source_key: str = ""
    destination_key: str = ""


@dataclass(frozen=True)
class TransferFailure:
    """
    A failed object copy.

    Attributes:
        relative_key (str): The key relative to the source prefix.
        stage (TransferStage): Whether the GET or the PUT failed.
        cause (TransferError): The error, chained to the underlying one.
        source_key (str): The full source key.
        destination_key (str): The full destination key.
    """

    relative_key: str
    stage: TransferStage
    cause: TransferError
    source_key: str = ""
    destination_key: str = ""


TransferOutcome = Union[TransferSuccess, TransferFailure]


class TransferTask:
    """
    Copies single objects between two buckets.

    One instance is shared by every concurrent transfer of a run; it holds
    only the two clients, bucket names and part sizing, and never mutates them.

    Objects up to `multipart_threshold` bytes are read in full and written
    with a single `put_object`. Larger objects are streamed through a
    multipart upload one part at a time, so a transfer never holds more than
    `part_size` bytes of such an object in memory.
    """

    def __init__(
        self,
        source_client: "S3Client",
        destination_client: "S3Client",
        source_bucket: str,
        destination_bucket: str,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
        part_size: int = DEFAULT_PART_SIZE,
    ) -> None:
        """
        Args:
            source_client (S3Client): Client bound to the source credentials.
            destination_client (S3Client): Client bound to the destination credentials.
            source_bucket (str): The bucket to read from.
            destination_bucket (str): The bucket to write to.
            multipart_threshold (int): Objects larger than this are copied
                with a multipart upload.
            part_size (int): Bytes read from the source for each part.
        """
        self._source_client: "S3Client" = source_client
        self._destination_client: "S3Client" = destination_client
        self._source_bucket: str = source_bucket
        self._destination_bucket: str = destination_bucket
        self._multipart_threshold: int = multipart_threshold
        self._part_size: int = part_size

    async def execute(self, source_key: str, mapping: KeyMapping) -> TransferOutcome:
        """
        Performs one GET -> PUT copy.

        If the GET fails no PUT is attempted. The source body stream is
        consumed once and released before this method returns.

        Args:
            source_key (str): The key to read from the source bucket.
            mapping (KeyMapping): The relative and destination keys.

        Returns:
            TransferOutcome: `TransferSuccess` with the byte count, or
                `TransferFailure` with the failing stage and its cause.
        """
        source_uri: str = f"s3://{self._source_bucket}/{source_key}"

        try:
            response: "GetObjectOutputTypeDef" = await self._source_client.get_object(
                Bucket=self._source_bucket, Key=source_key
            )
        except Exception as e:
            return self._failure(
                source_key,
                mapping,
                TransferStage.GET,
                GetError(f"Failed to get '{source_uri}': {e}"),
                e,
            )

        content_length: Optional[int] = response.get("ContentLength")
        if content_length is not None and content_length > self._multipart_threshold:
            return await self._copy_multipart(source_key, mapping, response, content_length)
        return await self._copy_single(source_key, mapping, response, content_length)

    async def _copy_single(
        self,
        source_key: str,
        mapping: KeyMapping,
        response: "GetObjectOutputTypeDef",
        content_length: Optional[int],
    ) -> TransferOutcome:
        """Reads the whole body and writes it with one `put_object`."""
        source_uri: str = f"s3://{self._source_bucket}/{source_key}"
        dest_uri: str = f"s3://{self._destination_bucket}/{mapping.destination_key}"

        try:
            async with response["Body"] as stream:
                body: bytes = await stream.read()
        except Exception as e:
            return self._failure(
                source_key,
                mapping,
                TransferStage.GET,
                GetError(f"Failed to read the body of '{source_uri}': {e}"),
                e,
            )

        if content_length is None:
            content_length = len(body)
        elif len(body) != content_length:
            return self._failure(
                source_key,
                mapping,
                TransferStage.GET,
                self._short_read(source_uri, content_length, len(body)),
            )

        put_kwargs: Dict[str, Any] = {
            "Bucket": self._destination_bucket,
            "Key": mapping.destination_key,
            "Body": body,
            "ContentLength": content_length,
            **_copied_attributes(response),
        }

        try:
            await self._destination_client.put_object(**put_kwargs)
        except Exception as e:
            return self._failure(
                source_key,
                mapping,
                TransferStage.PUT,
                PutError(f"Failed to put '{dest_uri}': {e}"),
                e,
            )

        return self._success(source_key, mapping, content_length)

    async def _copy_multipart(
        self,
        source_key: str,
        mapping: KeyMapping,
        response: "GetObjectOutputTypeDef",
        content_length: int,
    ) -> TransferOutcome:
        """
        Streams the body into a multipart upload, one part at a time.

        A failed read is a GET failure and a failed upload call a PUT failure.
        Either way the upload is aborted so no partial object or orphaned
        parts remain at the destination.
        """
        source_uri: str = f"s3://{self._source_bucket}/{source_key}"
        dest_uri: str = f"s3://{self._destination_bucket}/{mapping.destination_key}"

        async with response["Body"] as stream:
            try:
                upload: Dict[str, Any] = (
                    await self._destination_client.create_multipart_upload(
                        Bucket=self._destination_bucket,
                        Key=mapping.destination_key,
                        **_copied_attributes(response),
                    )
                )
            except Exception as e:
                return self._failure(
                    source_key,
                    mapping,
                    TransferStage.PUT,
                    PutError(f"Failed to start a multipart upload to '{dest_uri}': {e}"),
                    e,
                )
            upload_id: str = upload["UploadId"]
            logger.debug(
                f"Streaming '{source_uri}' ({content_length} bytes) to '{dest_uri}' "
                f"in parts of {self._part_size} bytes."
            )

            parts: List[Dict[str, Any]] = []
            total: int = 0
            try:
                while True:
                    try:
                        chunk: bytes = await stream.read(self._part_size)
                    except Exception as e:
                        raise GetError(
                            f"Failed to read the body of '{source_uri}': {e}"
                        ) from e
                    if not chunk:
                        break
                    total += len(chunk)
                    part_number: int = len(parts) + 1
                    try:
                        part: Dict[str, Any] = await self._destination_client.upload_part(
                            Bucket=self._destination_bucket,
                            Key=mapping.destination_key,
                            UploadId=upload_id,
                            PartNumber=part_number,
                            Body=chunk,
                            ContentLength=len(chunk),
                        )
                    except Exception as e:
                        raise PutError(
                            f"Failed to upload part {part_number} of '{dest_uri}': {e}"
                        ) from e
                    parts.append({"PartNumber": part_number, "ETag": part["ETag"]})

                if total != content_length:
                    raise self._short_read(source_uri, content_length, total)

                try:
                    await self._destination_client.complete_multipart_upload(
                        Bucket=self._destination_bucket,
                        Key=mapping.destination_key,
                        UploadId=upload_id,
                        MultipartUpload={"Parts": parts},
                    )
                except Exception as e:
                    raise PutError(
                        f"Failed to complete the multipart upload to '{dest_uri}': {e}"
                    ) from e
            except TransferError as error:
                await self._abort(mapping, upload_id)
                stage: TransferStage = (
                    TransferStage.PUT if isinstance(error, PutError) else TransferStage.GET
                )
                return self._failure(source_key, mapping, stage, error, error.__cause__)

        return self._success(source_key, mapping, content_length)

    async def _abort(self, mapping: KeyMapping, upload_id: str) -> None:
        try:
            await self._destination_client.abort_multipart_upload(
                Bucket=self._destination_bucket,
                Key=mapping.destination_key,
                UploadId=upload_id,
            )
        except Exception as e:
            logger.warning(
                f"Failed to abort multipart upload {upload_id} for "
                f"'{mapping.destination_key}': {e}"
            )

    def _success(
        self, source_key: str, mapping: KeyMapping, content_length: int
    ) -> TransferSuccess:
        logger.debug(
            f"Copied 's3://{self._source_bucket}/{source_key}' -> "
            f"'s3://{self._destination_bucket}/{mapping.destination_key}' "
            f"({content_length} bytes)"
        )
        return TransferSuccess(
            relative_key=mapping.relative_key,
            bytes_transferred=content_length,
            source_key=source_key,
            destination_key=mapping.destination_key,
        )

    @staticmethod
    def _short_read(source_uri: str, expected: int, actual: int) -> GetError:
        return GetError(
            f"Short read on '{source_uri}': expected {expected} bytes, got {actual}"
        )

    @staticmethod
    def _failure(
        source_key: str,
        mapping: KeyMapping,
        stage: TransferStage,
        error: TransferError,
        underlying: Optional[BaseException] = None,
    ) -> TransferFailure:
        """Builds a failure outcome, chaining the error to its underlying cause."""
        error.__cause__ = underlying
        return TransferFailure(
            relative_key=mapping.relative_key,
            stage=stage,
            cause=error,
            source_key=source_key,
            destination_key=mapping.destination_key,
        )


def _copied_attributes(response: Mapping[str, Any]) -> Dict[str, Any]:
    """Picks the headers that are carried over, leaving out absent ones."""
    return {
        attribute: response[attribute]
        for attribute in COPIED_ATTRIBUTES
        if response.get(attribute) is not None
    }
