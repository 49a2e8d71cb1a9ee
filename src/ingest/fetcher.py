"""Source payload fetcher.

This module downloads one source feed over HTTP(S), S3, or a local
``file://`` path into scratch space and extracts the single matching
archive member to disk when the download is a ZIP. Payloads are passed
on as file paths; ``fetched_payload`` keeps the scratch directory alive
while the caller parses and removes it on every exit path.
"""

from __future__ import annotations

import fnmatch
import shutil
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import unquote, urlparse

import requests

from core.constants import FETCH_CHUNK_SIZE, FETCH_USER_AGENT, RETRYABLE_STATUS_CODES
from core.errors import FetchError, IngestCancelledError, PropflowDependencyError
from core.logging_config import get_logger
from core.s3_uri import parse_s3_uri
from core.sources import SourceConfig
from core.types import PayloadShape, RawPayload, SourceKind, utc_now

_LOGGER = get_logger(__name__)

PAYLOAD_SHAPES: dict[SourceKind, PayloadShape] = {
    "sales_csv": "delimited_text",
    "rental_workbook": "workbook",
}
_ZIP_MAGIC = b"PK\x03\x04"


class _TransientFetchError(Exception):
    """Internal marker for failures worth retrying."""


@contextmanager
def fetched_payload(
    source: SourceConfig,
    work_dir: Path,
    backoff_seconds: float,
    session: requests.Session | None = None,
    cancel_event: threading.Event | None = None,
) -> Iterator[RawPayload]:
    """Fetch one source into scratch space that lives for the ``with`` block.

    Args:
        source: Source descriptor.
        work_dir: Parent directory for the scoped scratch directory.
        backoff_seconds: Base delay for exponential retry backoff.
        session: Optional HTTP session; a private one is created otherwise.
        cancel_event: Optional event that aborts the fetch when set.

    Yields:
        Payload whose file is removed when the block exits.

    Raises:
        FetchError: If download or archive extraction fails.
        IngestCancelledError: If cancellation is requested mid-fetch.
    """
    _ensure_directory(work_dir)
    with tempfile.TemporaryDirectory(prefix=f"{source.source_id}-", dir=work_dir) as scratch:
        yield fetch_source(
            source, Path(scratch), backoff_seconds, session=session, cancel_event=cancel_event
        )


def fetch_source(
    source: SourceConfig,
    scratch_dir: Path,
    backoff_seconds: float,
    session: requests.Session | None = None,
    cancel_event: threading.Event | None = None,
) -> RawPayload:
    """Fetch one source payload into a caller-owned scratch directory.

    Args:
        source: Source descriptor.
        scratch_dir: Directory receiving the download; the caller removes it.
        backoff_seconds: Base delay for exponential retry backoff.
        session: Optional HTTP session; a private one is created otherwise.
        cancel_event: Optional event that aborts the fetch when set.

    Returns:
        Payload file tagged with its shape.

    Raises:
        FetchError: If download or archive extraction fails.
        IngestCancelledError: If cancellation is requested mid-fetch.
    """
    _ensure_directory(scratch_dir)
    owns_session = session is None
    http_session = session or requests.Session()
    download_path = scratch_dir / "download"
    try:
        _download_with_retries(source, download_path, backoff_seconds, http_session, cancel_event)
    finally:
        if owns_session:
            http_session.close()
    payload_path, member_name = _extract_payload(source, download_path, cancel_event)
    payload = RawPayload(
        source_id=source.source_id,
        shape=PAYLOAD_SHAPES[source.kind],
        path=payload_path,
        origin_url=source.url,
        fetched_at=utc_now(),
        byte_size=payload_path.stat().st_size,
        archive_member=member_name,
    )
    _LOGGER.info(
        "source_fetched",
        source_id=source.source_id,
        url=source.url,
        byte_size=payload.byte_size,
        archive_member=member_name,
    )
    return payload

def select_archive_member(member_names: list[str], pattern: str) -> str:
    """Select exactly one archive member by exact name or glob.

    Args:
        member_names: Names listed in the archive.
        pattern: Exact member name or glob pattern.

    Returns:
        The single matching member name.

    Raises:
        FetchError: If zero or several members match.
    """
    file_names = [name for name in member_names if not name.endswith("/")]
    if pattern in file_names:
        return pattern
    matches = [
        name
        for name in file_names
        if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(Path(name).name, pattern)
    ]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise FetchError(
            f"No archive member matches '{pattern}'. Archive contains: "
            f"{', '.join(file_names) or 'no files'}."
        )
    raise FetchError(
        f"Archive member pattern '{pattern}' is ambiguous: matched {', '.join(matches)}. "
        "Set archive_member to an exact member name."
    )


def _download_with_retries(
    source: SourceConfig,
    destination: Path,
    backoff_seconds: float,
    session: requests.Session,
    cancel_event: threading.Event | None,
) -> None:
    attempts = source.max_retries + 1
    last_error: _TransientFetchError | None = None
    for attempt in range(1, attempts + 1):
        _raise_if_cancelled(source, cancel_event)
        try:
            _download_once(source, destination, session, cancel_event)
            return
        except _TransientFetchError as error:
            last_error = error
        if attempt == attempts:
            break
        delay = backoff_seconds * (2 ** (attempt - 1))
        _LOGGER.warning(
            "fetch_retry",
            source_id=source.source_id,
            attempt=attempt,
            delay_seconds=delay,
            error=str(last_error),
        )
        if cancel_event is None:
            time.sleep(delay)
        elif cancel_event.wait(delay):
            _raise_if_cancelled(source, cancel_event)
    raise FetchError(
        f"Failed to fetch {source.url} for source '{source.source_id}' after "
        f"{attempts} attempt(s): {last_error}"
    ) from last_error


def _download_once(
    source: SourceConfig,
    destination: Path,
    session: requests.Session,
    cancel_event: threading.Event | None,
) -> None:
    if source.url.startswith(("http://", "https://")):
        _download_http(source, destination, session, cancel_event)
    elif source.url.startswith("s3://"):
        _download_s3(source, destination)
    elif source.url.startswith("file://"):
        _copy_local(source, destination)
    else:
        raise FetchError(
            f"Unsupported URL scheme for source '{source.source_id}': {source.url}. "
            "Use http(s)://, s3:// or file://."
        )


def _download_http(
    source: SourceConfig,
    destination: Path,
    session: requests.Session,
    cancel_event: threading.Event | None,
) -> None:
    try:
        response = session.get(
            source.url,
            timeout=source.timeout_seconds,
            stream=True,
            headers={"User-Agent": FETCH_USER_AGENT},
        )
    except (requests.Timeout, requests.ConnectionError) as error:
        raise _TransientFetchError(str(error)) from error
    except requests.RequestException as error:
        raise FetchError(f"HTTP request for {source.url} failed: {error}") from error
    with response:
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _TransientFetchError(f"HTTP {response.status_code} from {source.url}")
        if not response.ok:
            raise FetchError(
                f"HTTP {response.status_code} from {source.url} for source "
                f"'{source.source_id}'. Check the feed URL."
            )
        try:
            with destination.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=FETCH_CHUNK_SIZE):
                    _raise_if_cancelled(source, cancel_event)
                    if chunk:
                        handle.write(chunk)
        except (requests.Timeout, requests.ConnectionError) as error:
            raise _TransientFetchError(str(error)) from error
        except requests.RequestException as error:
            raise FetchError(f"Download from {source.url} failed: {error}") from error


def _download_s3(source: SourceConfig, destination: Path) -> None:
    location = parse_s3_uri(source.url, FetchError)
    client, botocore_exceptions = _build_s3_client(source)
    try:
        client.download_file(location.bucket, location.key, str(destination))
    except botocore_exceptions.ClientError as error:
        raise FetchError(
            f"S3 download of {source.url} failed: {error}. Check bucket, key and credentials."
        ) from error
    except botocore_exceptions.BotoCoreError as error:
        raise _TransientFetchError(str(error)) from error


def _build_s3_client(source: SourceConfig) -> tuple[Any, Any]:
    try:
        import boto3
        import botocore.config
        import botocore.exceptions
    except ImportError as error:  # pragma: no cover - dependency failure
        raise PropflowDependencyError(
            "S3 source URLs require boto3. Install with 'pip install boto3'."
        ) from error
    client_config = botocore.config.Config(
        connect_timeout=source.timeout_seconds,
        read_timeout=source.timeout_seconds,
    )
    return boto3.client("s3", config=client_config), botocore.exceptions


def _copy_local(source: SourceConfig, destination: Path) -> None:
    local_path = Path(unquote(urlparse(source.url).path))
    try:
        shutil.copyfile(local_path, destination)
    except OSError as error:
        raise FetchError(
            f"Cannot read local feed {local_path} for source '{source.source_id}': {error}."
        ) from error


def _extract_payload(
    source: SourceConfig,
    download_path: Path,
    cancel_event: threading.Event | None,
) -> tuple[Path, str | None]:
    """Return the payload file, extracting one archive member for ZIP downloads.

    Extraction only applies when the source names an archive member;
    xlsx workbooks are ZIP containers and are returned whole.
    """
    with download_path.open("rb") as handle:
        is_archive = handle.read(len(_ZIP_MAGIC)) == _ZIP_MAGIC
    if not is_archive or source.archive_member is None:
        return download_path, None
    member_path = download_path.with_name("payload")
    try:
        with zipfile.ZipFile(download_path) as archive:
            member_name = select_archive_member(archive.namelist(), source.archive_member)
            with archive.open(member_name) as member, member_path.open("wb") as target:
                for chunk in iter(lambda: member.read(FETCH_CHUNK_SIZE), b""):
                    _raise_if_cancelled(source, cancel_event)
                    target.write(chunk)
    except zipfile.BadZipFile as error:
        raise FetchError(
            f"Corrupt ZIP archive from {source.url} for source '{source.source_id}': {error}."
        ) from error
    except OSError as error:
        raise FetchError(
            f"Cannot extract '{source.archive_member}' for source '{source.source_id}' "
            f"into {member_path.parent}: {error}. Check free space under PROPFLOW_TEMP_DIR."
        ) from error
    download_path.unlink()
    return member_path, member_name


def _ensure_directory(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise FetchError(
            f"Cannot create fetch working directory {directory}: {error}. "
            "Set PROPFLOW_TEMP_DIR to a writable path."
        ) from error

def _raise_if_cancelled(source: SourceConfig, cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise IngestCancelledError(f"Fetch of source '{source.source_id}' was cancelled.")
