"""Unit tests for S3 feed URL parsing."""

from __future__ import annotations

import pytest

from core.errors import FetchError, PropflowConfigError
from core.s3_uri import S3FeedObject, parse_s3_uri


def test_parse_s3_uri_splits_bucket_and_nested_key() -> None:
    """Everything after the bucket should become the object key."""
    location = parse_s3_uri("s3://nsw-feeds/sales/2024/archive.zip")

    assert location == S3FeedObject(bucket="nsw-feeds", key="sales/2024/archive.zip")


@pytest.mark.parametrize(
    "uri",
    [
        "s3://nsw-feeds",
        "s3://nsw-feeds/",
        "s3://nsw-feeds/sales/",
        "s3:///sales.zip",
        "s3://NSW_Feeds/sales.zip",
        "https://nsw-feeds/sales.zip",
    ],
)
def test_parse_s3_uri_rejects_urls_without_single_object(uri: str) -> None:
    """Bucket-only URLs, key prefixes and bad bucket names are config errors."""
    with pytest.raises(PropflowConfigError):
        parse_s3_uri(uri)

    assert True


def test_parse_s3_uri_uses_requested_error_type() -> None:
    """The fetcher should receive FetchError for malformed URLs."""
    with pytest.raises(FetchError, match="prefix, not an object"):
        parse_s3_uri("s3://nsw-feeds/sales/", FetchError)

    assert True
