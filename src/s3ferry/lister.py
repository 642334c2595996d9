# src/s3ferry/lister.py
"""
Paged enumeration of the objects under a prefix in the source bucket.

Pages are fetched one at a time, each request carrying the continuation
token of the previous response, and their objects are yielded lazily in
the order the service returns them.
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from s3ferry.exceptions import ListError

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectDescriptor:
    """
    A listed source object.

    Attributes:
        key (str): The object key.
        size (int, optional): The object size in bytes, if reported.
    """

    key: str
    size: Optional[int] = None


@dataclass(frozen=True)
class Page:
    """
    One response of a paged list call.

    Attributes:
        objects (Tuple[ObjectDescriptor, ...]): The objects, in service order.
        is_truncated (bool): Whether more pages follow.
        continuation_token (str, optional): The cursor for the next page.
    """

    objects: Tuple[ObjectDescriptor, ...]
    is_truncated: bool = False
    continuation_token: Optional[str] = None


async def list_pages(
    client: "S3Client",
    bucket: str,
    prefix: str,
    page_size: Optional[int] = None,
) -> AsyncGenerator[Page, None]:
    """
    Yields every page of a `ListObjectsV2` enumeration, in order.

    A page that is not marked truncated ends the enumeration. Failures of a
    list call are not retried.

    Args:
        client (S3Client): An initialized S3 client for the source.
        bucket (str): The bucket to list.
        prefix (str): Only keys starting with this prefix are listed.
        page_size (int, optional): The `MaxKeys` value for each request.

    Yields:
        Page: Each page as returned by the service.

    Raises:
        ListError: If a list call fails, or a truncated page carries no
            continuation token.
    """
    continuation_token: Optional[str] = None
    page_number: int = 0

    while True:
        page_number += 1
        request: Dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if continuation_token is not None:
            request["ContinuationToken"] = continuation_token
        if page_size is not None:
            request["MaxKeys"] = page_size

        try:
            response: "ListObjectsV2OutputTypeDef" = await client.list_objects_v2(
                **request
            )
        except (ClientError, BotoCoreError) as e:
            raise ListError(
                f"Listing page {page_number} of 's3://{bucket}/{prefix}' failed: {e}",
                page_number=page_number,
            ) from e

        page: Page = Page(
            objects=tuple(
                ObjectDescriptor(key=obj["Key"], size=obj.get("Size"))
                for obj in response.get("Contents", [])
            ),
            is_truncated=bool(response.get("IsTruncated", False)),
            continuation_token=response.get("NextContinuationToken"),
        )
        logger.debug(
            f"Listed page {page_number} of 's3://{bucket}/{prefix}': "
            f"{len(page.objects)} objects, truncated={page.is_truncated}"
        )
        yield page

        if not page.is_truncated:
            return
        if not page.continuation_token:
            raise ListError(
                f"Page {page_number} of 's3://{bucket}/{prefix}' is truncated "
                "but has no continuation token.",
                page_number=page_number + 1,
            )
        continuation_token = page.continuation_token


async def list_objects(
    client: "S3Client",
    bucket: str,
    prefix: str,
    page_size: Optional[int] = None,
) -> AsyncGenerator[ObjectDescriptor, None]:
    """
    Yields every object under `prefix`, page by page.

    The next page is only requested once the consumer has pulled every
    object of the current one.

    Args:
        client (S3Client): An initialized S3 client for the source.
        bucket (str): The bucket to list.
        prefix (str): Only keys starting with this prefix are listed.
        page_size (int, optional): The `MaxKeys` value for each request.

    Yields:
        ObjectDescriptor: Each listed object, in service order.
    """
    async with aclosing(list_pages(client, bucket, prefix, page_size)) as pages:
        async for page in pages:
            for descriptor in page.objects:
                yield descriptor
