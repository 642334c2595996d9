# src/s3ferry/paths.py
"""Parsing of `s3://bucket[/prefix]` path strings."""

import re
from dataclasses import dataclass
from typing import Optional, Pattern

from s3ferry.exceptions import PathParseError

_S3_PATH_RE: Pattern[str] = re.compile(r"^s3://([^/]+)(?:/(.*))?$", re.DOTALL)


@dataclass(frozen=True)
class ObjectLocator:
    """
    A bucket and a key prefix within it.

    Attributes:
        bucket (str): The bucket name. Never empty.
        prefix (str): The key or key prefix. Empty means the whole bucket.
    """

    bucket: str
    prefix: str = ""

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}"


def parse_locator(text: str) -> ObjectLocator:
    """
    Parses a path string into an `ObjectLocator`.

    Args:
        text (str): A string such as `s3://bucket` or `s3://bucket/some/prefix`.

    Returns:
        ObjectLocator: The parsed bucket and prefix.

    Raises:
        PathParseError: If the string is not an `s3://` path with a bucket.
    """
    match: Optional["re.Match[str]"] = _S3_PATH_RE.match(text)
    if match is None:
        raise PathParseError(
            f"Invalid path '{text}': expected the form s3://bucket[/prefix]."
        )
    return ObjectLocator(bucket=match.group(1), prefix=match.group(2) or "")
