# src/s3ferry/__init__.py
"""
s3ferry: A concurrent, prefix-based object copier between S3 buckets.

This package copies every object under a key prefix from a source bucket
to a destination bucket, which may live in another account, preserving
relative key structure together with content headers and user metadata.

The primary entry point for programmatic use is the `CopyPipeline` class.
"""

from typing import List

from s3ferry.pipeline import CopyPipeline

__all__: List[str] = ["CopyPipeline"]
