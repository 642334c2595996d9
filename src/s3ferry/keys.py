# src/s3ferry/keys.py
"""Derivation of destination keys from source keys."""

from dataclasses import dataclass


@dataclass(frozen=True)
class KeyMapping:
    """
    Where a source object lands in the destination.

    Attributes:
        relative_key (str): The source key with the source prefix removed.
        destination_key (str): The full key to write in the destination bucket.
    """

    relative_key: str
    destination_key: str

    @property
    def is_directory_marker(self) -> bool:
        """True when the source key was the source prefix itself."""
        return self.relative_key == ""


def map_key(source_prefix: str, destination_prefix: str, source_key: str) -> KeyMapping:
    """
    Maps a source key under `source_prefix` to its key under `destination_prefix`.

    The source prefix is stripped from the front of the key (the key is kept
    whole if it does not start with it), then a single leading "/" is dropped.
    The remainder is joined to the destination prefix, with trailing slashes
    trimmed, using exactly one "/". Repeated slashes and escapes are left alone.
    An empty destination prefix places the object at its relative key.

    Args:
        source_prefix (str): The prefix the source objects were listed under.
        destination_prefix (str): The prefix to copy the objects under.
        source_key (str): The key of the object in the source bucket.

    Returns:
        KeyMapping: The relative and destination keys.
    """
    relative_key: str = source_key
    if source_key.startswith(source_prefix):
        relative_key = source_key[len(source_prefix) :]
    if relative_key.startswith("/"):
        relative_key = relative_key[1:]

    base: str = destination_prefix.rstrip("/")
    if not base:
        return KeyMapping(relative_key=relative_key, destination_key=relative_key)
    if not relative_key:
        return KeyMapping(relative_key=relative_key, destination_key=base)
    return KeyMapping(relative_key=relative_key, destination_key=f"{base}/{relative_key}")
