"""Chart repository mirroring for chart-mirror."""

import logging
import os
import shutil
import ssl
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import httpx

from config import MirrorSelection, RepositoryConfig
from errors import NetworkError, StorageError, ValidationError
from index import IndexEntry, RankFunction, fetch_index, filter_entries, parse_index, rank_versions
from logging_setup import get_logger


@dataclass
class MirrorResult:
    total_entries: int
    selected_entries: int
    downloaded: int
    failed: int
    replaced_urls: int
    index_path: Path


def create_client(repository: RepositoryConfig, timeout: float = 30.0) -> httpx.Client:
    """Build the HTTP client used for the index and all archives."""
    verify: ssl.SSLContext | bool = True
    if repository.ca_file or repository.cert_file:
        try:
            verify = ssl.create_default_context(cafile=repository.ca_file or None)
            if repository.cert_file:
                verify.load_cert_chain(
                    repository.cert_file,
                    keyfile=repository.key_file or None,
                )
        except (OSError, ssl.SSLError) as e:
            raise ValidationError(f"cannot load TLS files: {e}") from e

    auth = None
    if repository.username:
        auth = httpx.BasicAuth(repository.username, repository.password)

    return httpx.Client(
        auth=auth,
        verify=verify,
        timeout=timeout,
        follow_redirects=True,
    )


def rewrite_root_url(content: bytes, old_url: str, new_url: str) -> tuple[bytes, int]:
    """Replace every literal occurrence of old_url with new_url.

    Returns the new content and the number of replaced occurrences. An
    empty new_url leaves the content untouched.
    """
    if not new_url or not old_url:
        return content, 0
    old = old_url.encode()
    count = content.count(old)
    return content.replace(old, new_url.encode()), count


def move_file(src: Path, dst: Path) -> None:
    """Move src to dst by copying, keeping the permission bits of src.

    Works across filesystems. Moving a file onto itself does nothing.
    """
    if os.path.abspath(src) == os.path.abspath(dst):
        return

    try:
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            shutil.copyfileobj(fin, fout)
            fout.flush()
            os.fsync(fout.fileno())
        mode = os.stat(src).st_mode
        os.remove(src)
        os.chmod(dst, mode & 0o7777)
    except OSError as e:
        raise StorageError(f"cannot move {src} to {dst}: {e}") from e


class MirrorService:
    """Download a chart repository index and its archives into a directory."""

    def __init__(
        self,
        repository: RepositoryConfig,
        selection: MirrorSelection,
        client: httpx.Client,
        ignore_errors: bool = False,
        new_root_url: str = "",
        rank: RankFunction = rank_versions,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repository = repository
        self.selection = selection
        self.client = client
        self.ignore_errors = ignore_errors
        self.new_root_url = new_root_url
        self.rank = rank
        self.logger = logger or get_logger()

    def run(
        self,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> MirrorResult:
        """Mirror the repository.

        The index stays in a temporary file until every archive has been
        attempted, then moves into the destination.
        """
        # Fail on a bad filter before touching the network
        self.selection.validate()

        content = fetch_index(self.client, self.repository)
        entries = parse_index(content)
        selected = filter_entries(entries, self.selection, rank=self.rank)
        self.logger.info(
            "Found %d chart versions in index, %d selected", len(entries), len(selected)
        )

        if not selected and self.selection.is_filtered:
            message = self._no_match_message()
            if not self.ignore_errors:
                raise ValidationError(message)
            self.logger.warning("WARNING: %s", message)

        try:
            self.repository.destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"cannot create destination folder {self.repository.destination}: {e}"
            ) from e
        index_path = self._store_index(content)

        try:
            downloaded, failed = self.fetch_archives(selected, on_progress=on_progress)
            replaced = self.prepare_index_file(index_path)
        finally:
            # Already gone once relocated
            index_path.unlink(missing_ok=True)

        return MirrorResult(
            total_entries=len(entries),
            selected_entries=len(selected),
            downloaded=downloaded,
            failed=failed,
            replaced_urls=replaced,
            index_path=self.repository.index_path,
        )

    def fetch_archives(
        self,
        entries: list[IndexEntry],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> tuple[int, int]:
        """Download every URL of every entry, in order.

        Returns the number of written archives and of tolerated failures.
        """
        downloaded = 0
        failed = 0
        total = len(entries)

        for i, entry in enumerate(entries):
            for url in entry.urls:
                try:
                    content = self._download(entry, url)
                    self.write_archive(entry, content)
                except (NetworkError, StorageError) as e:
                    if not self.ignore_errors:
                        raise
                    self.logger.warning(
                        "WARNING: processing chart %s(%s) - %s", entry.name, entry.version, e
                    )
                    failed += 1
                    continue
                downloaded += 1
            if on_progress:
                on_progress(i + 1, total)

        return downloaded, failed

    def write_archive(self, entry: IndexEntry, content: bytes) -> Path:
        """Persist archive bytes under the entry's canonical file name."""
        path = self.repository.destination / entry.archive_name
        try:
            path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"cannot write file {path}: {e}") from e
        self.logger.debug("Wrote %s (%d bytes)", path, len(content))
        return path

    def prepare_index_file(self, index_path: Path) -> int:
        """Rewrite the root URL in the index if requested, then relocate it.

        Failures here are fatal regardless of ignore_errors.
        """
        replaced = 0
        if self.new_root_url:
            try:
                content = index_path.read_bytes()
                content, replaced = rewrite_root_url(
                    content, self.repository.url, self.new_root_url
                )
                index_path.write_bytes(content)
            except OSError as e:
                raise StorageError(f"cannot rewrite index {index_path}: {e}") from e
            self.logger.debug(
                "Replaced %d occurrences of %s with %s",
                replaced,
                self.repository.url,
                self.new_root_url,
            )

        move_file(index_path, self.repository.index_path)
        return replaced

    def _download(self, entry: IndexEntry, url: str) -> bytes:
        # Index URLs may be relative to the repository root
        absolute = urljoin(f"{self.repository.url.rstrip('/')}/", url)
        self.logger.debug("Downloading %s", absolute)
        try:
            response = self.client.get(absolute)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(
                f"cannot download {entry.archive_name} from {absolute}: {e}"
            ) from e
        return response.content

    def _store_index(self, content: bytes) -> Path:
        fd, path = tempfile.mkstemp(suffix=".yaml", prefix="index-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.chmod(path, 0o644)
        except OSError as e:
            Path(path).unlink(missing_ok=True)
            raise StorageError(f"cannot store index: {e}") from e
        return Path(path)

    def _no_match_message(self) -> str:
        if self.selection.chart_version:
            return (
                f"no chart matches name {self.selection.chart_name!r} "
                f"and version {self.selection.chart_version!r}"
            )
        return f"no chart matches name {self.selection.chart_name!r}"
