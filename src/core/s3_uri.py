"""S3 feed location parsing.

Source matrices and the fetcher both resolve ``s3://bucket/key`` feed
URLs through ``parse_s3_uri``. A feed must name a single object, so
bucket-only URLs and key prefixes ending in ``/`` are refused before any
download is attempted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from core.errors import PropflowConfigError, PropflowError

_BUCKET_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")


@dataclass(frozen=True)
class S3FeedObject:
    """Bucket and object key of an S3-hosted feed file."""

    bucket: str
    key: str


def parse_s3_uri(
    uri: str,
    error_type: type[PropflowError] = PropflowConfigError,
) -> S3FeedObject:
    """Parse an S3 feed URL into its bucket and object key.

    Args:
        uri: URL in the form ``s3://bucket/path/to/feed.zip``.
        error_type: Error raised when the URL does not name one object.

    Returns:
        Parsed feed object location.

    Raises:
        PropflowError: Of ``error_type`` for malformed URLs.
    """
    if not uri.startswith("s3://"):
        raise error_type(f"Invalid S3 feed URL '{uri}': expected the s3:// scheme.")
    bucket, _, key = uri.removeprefix("s3://").partition("/")
    if not _BUCKET_PATTERN.match(bucket):
        raise error_type(
            f"Invalid S3 feed URL '{uri}': bucket '{bucket}' is not a valid bucket name. "
            "Use 3-63 lowercase letters, digits, dots or hyphens."
        )
    if not key:
        raise error_type(
            f"Invalid S3 feed URL '{uri}': no object key. "
            "Point the source at the feed file, e.g. s3://bucket/feeds/sales.zip."
        )
    if key.endswith("/"):
        raise error_type(
            f"Invalid S3 feed URL '{uri}': key '{key}' is a prefix, not an object. "
            "Name the feed file itself."
        )
    return S3FeedObject(bucket=bucket, key=key)
