"""Helm chart loading and template rendering for chart-mirror."""

import logging
import os
import re
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from errors import ParseError
from logging_setup import get_logger

CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"

DOCUMENT_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)
SOURCE_COMMENT = re.compile(r"^# Source: (.+)$", re.MULTILINE)


@dataclass
class Chart:
    name: str
    version: str
    path: Path
    values: dict = field(default_factory=dict)


def _parse_yaml(content: bytes | str, what: str) -> dict:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ParseError(f"cannot parse {what}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(f"cannot parse {what}: not a mapping")
    return data


def _chart_from_metadata(path: Path, metadata: dict, values: dict) -> Chart:
    if not metadata.get("name"):
        raise ParseError(f"{path}: {CHART_FILE} has no chart name")
    return Chart(
        name=str(metadata["name"]),
        version=str(metadata.get("version") or ""),
        path=path,
        values=values,
    )


def load_chart_directory(path: Path) -> Chart:
    """Load an unpacked chart."""
    chart_file = path / CHART_FILE
    values_file = path / VALUES_FILE
    try:
        metadata = _parse_yaml(chart_file.read_bytes(), f"{chart_file}")
        values = {}
        if values_file.is_file():
            values = _parse_yaml(values_file.read_bytes(), f"{values_file}")
    except OSError as e:
        raise ParseError(f"{path} is not a chart: {e}") from e
    return _chart_from_metadata(path, metadata, values)


def load_chart_archive(path: Path) -> Chart:
    """Load a packaged chart (gzip tarball with a single top-level directory)."""
    try:
        with tarfile.open(path, "r:gz") as tar:
            members = {m.name: m for m in tar.getmembers() if m.isfile()}
            chart_members = [
                name for name in members
                if name.count("/") == 1 and name.endswith(f"/{CHART_FILE}")
            ]
            if not chart_members:
                raise ParseError(f"{path}: no {CHART_FILE} found in archive")

            root = chart_members[0].split("/", 1)[0]
            metadata = _parse_yaml(
                tar.extractfile(members[chart_members[0]]).read(),
                f"{path}:{CHART_FILE}",
            )
            values = {}
            values_member = members.get(f"{root}/{VALUES_FILE}")
            if values_member is not None:
                values = _parse_yaml(
                    tar.extractfile(values_member).read(),
                    f"{path}:{VALUES_FILE}",
                )
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ParseError(f"cannot load chart archive {path}: {e}") from e
    return _chart_from_metadata(path, metadata, values)


def split_manifests(output: str) -> dict[str, str]:
    """Split a multi-document template stream into named documents.

    Documents are keyed by their "# Source:" comment; documents sharing a
    source are joined, documents without one get a generated name.
    """
    documents: dict[str, str] = {}
    unnamed = 0
    for document in DOCUMENT_SEPARATOR.split(output):
        if not document.strip():
            continue
        match = SOURCE_COMMENT.search(document)
        if match:
            key = match.group(1).strip()
        else:
            key = f"manifest-{unnamed}"
            unnamed += 1
        if key in documents:
            documents[key] += document
        else:
            documents[key] = document
    return documents


class ChartRenderer:
    """Render chart templates through the helm binary."""

    def __init__(
        self,
        helm_path: str = "helm",
        release_name: str = "release-name",
        logger: logging.Logger | None = None,
    ) -> None:
        self.helm_path = helm_path
        self.release_name = release_name
        self.logger = logger or get_logger()

    def load(self, path: Path) -> Chart:
        """Load a chart from a directory or a packaged archive."""
        if path.is_dir():
            return load_chart_directory(path)
        return load_chart_archive(path)

    def render(self, chart: Chart, values: dict) -> dict[str, str]:
        """Render the chart with the given values.

        Returns a mapping of template source to rendered text, in the order
        helm emitted them.
        """
        fd, values_path = tempfile.mkstemp(suffix=".yaml", prefix="values-")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(values, f, default_flow_style=False)

            cmd = [
                self.helm_path,
                "template",
                self.release_name,
                str(chart.path),
                "--values",
                values_path,
            ]
            self.logger.debug("Running %s", " ".join(cmd))
            try:
                result = subprocess.run(cmd, capture_output=True, text=True)
            except OSError as e:
                raise ParseError(f"cannot run {self.helm_path}: {e}") from e
        finally:
            Path(values_path).unlink(missing_ok=True)

        if result.returncode != 0:
            raise ParseError(
                f"cannot render chart {chart.name}: {result.stderr.strip()}"
            )
        return split_manifests(result.stdout)
