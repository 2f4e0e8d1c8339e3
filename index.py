"""Chart repository index fetching, parsing and filtering for chart-mirror."""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import httpx
import yaml

from config import MirrorSelection, RepositoryConfig
from errors import NetworkError, ParseError

# Lenient SemVer: "v" prefix and missing minor/patch are accepted, as
# chart repositories publish such versions.
SEMVER_PATTERN = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


@dataclass(frozen=True)
class IndexEntry:
    name: str
    version: str
    digest: str = ""
    created: str = ""
    urls: tuple[str, ...] = ()

    @property
    def archive_name(self) -> str:
        """Canonical file name of this chart version's archive."""
        return f"{self.name}-{self.version}.tgz"


RankFunction = Callable[[list[IndexEntry]], list[IndexEntry]]


def fetch_index(client: httpx.Client, repository: RepositoryConfig) -> bytes:
    """Fetch the raw index document of a chart repository."""
    try:
        response = client.get(repository.index_url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise NetworkError(f"cannot fetch index {repository.index_url}: {e}") from e
    return response.content


def parse_index(content: bytes) -> list[IndexEntry]:
    """Parse an index document into its chart version records.

    The index structure is:
    {
        "apiVersion": "v1",
        "entries": {
            "chart": [
                {"name": ..., "version": ..., "digest": ..., "urls": [...]},
                ...
            ],
            ...
        }
    }

    Records without a version are skipped.
    """
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ParseError(f"cannot parse index: {e}") from e

    if document is None:
        return []
    if not isinstance(document, dict):
        raise ParseError("cannot parse index: document is not a mapping")

    entries = document.get("entries") or {}
    if not isinstance(entries, dict):
        raise ParseError("cannot parse index: 'entries' is not a mapping")

    result = []
    for chart_name, records in entries.items():
        if not isinstance(records, list):
            continue
        for record in records:
            if not isinstance(record, dict) or record.get("version") is None:
                continue
            result.append(
                IndexEntry(
                    name=str(record.get("name") or chart_name),
                    version=str(record["version"]),
                    digest=str(record.get("digest") or ""),
                    created=str(record.get("created") or ""),
                    urls=tuple(str(u) for u in record.get("urls") or ()),
                )
            )
    return result


def _version_key(version: str) -> tuple:
    match = SEMVER_PATTERN.match(version)
    if not match:
        return (0,)

    major, minor, patch, prerelease = match.groups()
    identifiers: tuple = ()
    if prerelease:
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in prerelease.split(".")
        )
    # A release outranks any of its pre-releases
    return (
        1,
        int(major),
        int(minor or 0),
        int(patch or 0),
        0 if prerelease else 1,
        identifiers,
    )


def rank_versions(entries: list[IndexEntry]) -> list[IndexEntry]:
    """Order one chart's versions from most to least relevant.

    Valid semantic versions come first, highest precedence first. Ties and
    unparseable versions keep their order in the index document.
    """
    return sorted(entries, key=lambda e: _version_key(e.version), reverse=True)


def filter_entries(
    entries: Iterable[IndexEntry],
    selection: MirrorSelection,
    rank: RankFunction = rank_versions,
) -> list[IndexEntry]:
    """Select the index entries to mirror.

    Charts are matched by searching the name pattern in the chart name; a
    non-empty name must then equal the chart name exactly. Results are
    ordered by name. Without an exact version only the top-ranked
    version of each chart is kept unless all versions are requested.
    """
    pattern = selection.validate()

    groups: dict[str, list[IndexEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.name, []).append(entry)

    selected = []
    for name in sorted(groups):
        if not pattern.search(name):
            continue
        if selection.chart_name and name != selection.chart_name:
            continue
        ranked = rank(groups[name])
        if selection.chart_version:
            selected.extend(e for e in ranked if e.version == selection.chart_version)
        elif selection.all_versions:
            selected.extend(ranked)
        else:
            selected.extend(ranked[:1])
    return selected
