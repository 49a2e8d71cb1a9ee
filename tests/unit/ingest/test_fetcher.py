"""Unit tests for the source payload fetcher."""

from __future__ import annotations

import threading
import zipfile
from pathlib import Path

import pytest
import requests

from core.errors import FetchError, IngestCancelledError
from feed_fixtures import sales_row, sales_source, write_sales_archive
from ingest.fetcher import fetch_source, fetched_payload, select_archive_member


class _FakeResponse:
    def __init__(self, status_code: int, body: bytes = b"") -> None:
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self._body = body

    def iter_content(self, chunk_size: int):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class _FakeSession:
    """Session stub returning queued responses or raising queued errors."""

    def __init__(self, outcomes: list) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def get(self, url: str, **kwargs) -> _FakeResponse:
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        return None


def test_fetch_local_archive_extracts_matching_member(tmp_path: Path) -> None:
    """ZIP payloads should be reduced to the matching member file on disk."""
    archive_path = write_sales_archive(tmp_path / "feeds", [sales_row()])
    source = sales_source(url=archive_path.resolve().as_uri())
    scratch_dir = tmp_path / "scratch"

    payload = fetch_source(source, scratch_dir, backoff_seconds=0.0)

    assert payload.archive_member == "2024/sales_2024.csv"
    assert payload.path.parent == scratch_dir
    assert payload.path.read_bytes().startswith(b"Property ID")
    assert payload.byte_size == payload.path.stat().st_size


def test_fetch_archive_keeps_only_extracted_member(tmp_path: Path) -> None:
    """The downloaded archive should be dropped once its member is extracted."""
    archive_path = write_sales_archive(tmp_path / "feeds", [sales_row()])
    scratch_dir = tmp_path / "scratch"

    payload = fetch_source(
        sales_source(url=archive_path.resolve().as_uri()), scratch_dir, backoff_seconds=0.0
    )

    assert list(scratch_dir.iterdir()) == [payload.path]


def test_fetch_local_plain_file_returns_bytes(tmp_path: Path) -> None:
    """Non-archive payloads should be returned as-is."""
    feed_path = tmp_path / "sales.csv"
    feed_path.write_bytes(b"header\nrow\n")
    source = sales_source(url=feed_path.resolve().as_uri())

    payload = fetch_source(source, tmp_path / "scratch", backoff_seconds=0.0)

    assert payload.path.read_bytes() == b"header\nrow\n" and payload.archive_member is None


def test_fetched_payload_lives_until_block_exits(tmp_path: Path) -> None:
    """The payload file should exist inside the block and be removed after it."""
    archive_path = write_sales_archive(tmp_path / "feeds", [sales_row()])
    work_dir = tmp_path / "work"
    source = sales_source(url=archive_path.resolve().as_uri())

    with fetched_payload(source, work_dir, backoff_seconds=0.0) as payload:
        assert payload.path.exists()

    assert list(work_dir.iterdir()) == []


def test_fetched_payload_removes_scratch_when_block_raises(tmp_path: Path) -> None:
    """Scratch space should be removed when the consumer fails mid-parse."""
    archive_path = write_sales_archive(tmp_path / "feeds", [sales_row()])
    work_dir = tmp_path / "work"
    source = sales_source(url=archive_path.resolve().as_uri())

    with pytest.raises(RuntimeError):
        with fetched_payload(source, work_dir, backoff_seconds=0.0):
            raise RuntimeError("write failed")

    assert list(work_dir.iterdir()) == []


def test_fetch_missing_local_file_raises_fetch_error(tmp_path: Path) -> None:
    """Missing local feeds should fail with FetchError."""
    source = sales_source(url=(tmp_path / "absent.zip").resolve().as_uri())

    with pytest.raises(FetchError):
        with fetched_payload(source, tmp_path / "work", backoff_seconds=0.0):
            pass

    assert list((tmp_path / "work").iterdir()) == []


def test_fetch_retries_transient_http_status(tmp_path: Path) -> None:
    """5xx responses should be retried within the retry budget."""
    session = _FakeSession([_FakeResponse(503), _FakeResponse(200, b"a,b\n1,2\n")])
    source = sales_source(url="https://example.org/sales.csv", max_retries=2)

    payload = fetch_source(source, tmp_path / "scratch", backoff_seconds=0.0, session=session)

    assert (payload.path.read_bytes(), session.calls) == (b"a,b\n1,2\n", 2)


def test_fetch_retries_connection_errors(tmp_path: Path) -> None:
    """Connection errors should be retried."""
    session = _FakeSession(
        [requests.ConnectionError("reset"), _FakeResponse(200, b"a,b\n")]
    )
    source = sales_source(url="https://example.org/sales.csv", max_retries=1)

    payload = fetch_source(source, tmp_path / "scratch", backoff_seconds=0.0, session=session)

    assert payload.path.read_bytes() == b"a,b\n"


def test_fetch_gives_up_after_retry_budget(tmp_path: Path) -> None:
    """Exhausting retries should raise FetchError."""
    session = _FakeSession([_FakeResponse(503), _FakeResponse(503)])
    source = sales_source(url="https://example.org/sales.csv", max_retries=1)

    with pytest.raises(FetchError):
        fetch_source(source, tmp_path / "scratch", backoff_seconds=0.0, session=session)

    assert session.calls == 2


def test_fetch_does_not_retry_client_errors(tmp_path: Path) -> None:
    """4xx responses other than 429 should fail immediately."""
    session = _FakeSession([_FakeResponse(404), _FakeResponse(200, b"a,b\n")])
    source = sales_source(url="https://example.org/sales.csv", max_retries=3)

    with pytest.raises(FetchError):
        fetch_source(source, tmp_path / "scratch", backoff_seconds=0.0, session=session)

    assert session.calls == 1


def test_fetch_raises_when_cancelled(tmp_path: Path) -> None:
    """A set cancel event should abort the fetch."""
    cancel_event = threading.Event()
    cancel_event.set()
    session = _FakeSession([_FakeResponse(200, b"a,b\n")])
    source = sales_source(url="https://example.org/sales.csv")

    with pytest.raises(IngestCancelledError):
        fetch_source(
            source,
            tmp_path / "work",
            backoff_seconds=0.0,
            session=session,
            cancel_event=cancel_event,
        )

    assert session.calls == 0


def test_fetch_corrupt_archive_raises_fetch_error(tmp_path: Path) -> None:
    """Truncated ZIP archives should fail with FetchError."""
    archive_path = write_sales_archive(tmp_path / "feeds", [sales_row()])
    archive_path.write_bytes(archive_path.read_bytes()[:40])
    source = sales_source(url=archive_path.resolve().as_uri())

    with pytest.raises(FetchError):
        fetch_source(source, tmp_path / "work", backoff_seconds=0.0)

    assert True


def test_fetch_archive_without_match_raises(tmp_path: Path) -> None:
    """Archives without a matching member should fail with FetchError."""
    archive_path = tmp_path / "feeds.zip"
    with zipfile.ZipFile(archive_path, "w") as archive:
        archive.writestr("readme.txt", "no data here")
    source = sales_source(url=archive_path.resolve().as_uri())

    with pytest.raises(FetchError):
        fetch_source(source, tmp_path / "work", backoff_seconds=0.0)

    assert True


def test_select_archive_member_rejects_ambiguous_glob() -> None:
    """Globs matching several members should be rejected."""
    with pytest.raises(FetchError):
        select_archive_member(["2023/a.csv", "2024/b.csv"], "*.csv")

    assert True


def test_select_archive_member_prefers_exact_name() -> None:
    """An exact member name should be selected directly."""
    member = select_archive_member(["2023/a.csv", "2024/b.csv"], "2024/b.csv")

    assert member == "2024/b.csv"


def test_select_archive_member_matches_basename_glob() -> None:
    """Globs should also match member base names."""
    member = select_archive_member(["data/", "data/sales_2024.csv"], "sales_*.csv")

    assert member == "data/sales_2024.csv"
