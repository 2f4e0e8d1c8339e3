"""Container image extraction from rendered Helm charts."""

import logging
import os
import stat
from pathlib import Path
from typing import Any, Protocol

from errors import MirrorError, StorageError
from logging_setup import get_logger
from render import Chart

ARCHIVE_SUFFIX = ".tgz"
IMAGE_MARKER = "image:"


class Renderer(Protocol):
    def load(self, path: Path) -> Chart: ...

    def render(self, chart: Chart, values: dict) -> dict[str, str]: ...


def normalize_values(value: Any) -> Any:
    """Return a copy of a values tree with every null leaf set to "".

    Templates print "<nil>" for null values otherwise.
    """
    if value is None:
        return ""
    if isinstance(value, dict):
        return {k: normalize_values(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_values(v) for v in value]
    return value


def sanitize_image_string(line: str) -> str:
    """Reduce an "image:" manifest line to the bare image reference.

    '    image: "nginx:1.14.2"' -> 'nginx:1.14.2'
    '  - image: redis:6'        -> 'redis:6'
    """
    s = line.replace('"', "", 2)
    s = s.strip()
    s = s.removeprefix("-")
    s = s.strip()
    s = s.removeprefix("image: ")
    return s.strip()


def scan_images(text: str) -> list[str]:
    """Extract the image reference of every line mentioning "image:".

    Lines end at "\\n" only; a trailing "\\r" is dropped.
    """
    return [
        sanitize_image_string(line.removesuffix("\r"))
        for line in text.split("\n")
        if IMAGE_MARKER in line
    ]


class ImagesService:
    """Collect the container images used by a chart or a directory of charts."""

    def __init__(
        self,
        target: Path,
        renderer: Renderer,
        ignore_errors: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.target = Path(target)
        self.renderer = renderer
        self.ignore_errors = ignore_errors
        self.logger = logger or get_logger()
        self.buffer: list[str] = []
        self.has_archive_matches = False
        self.exit_with_errors = False

    def images(self) -> list[str]:
        """Process the target and return the images in discovery order."""
        try:
            is_dir = stat.S_ISDIR(self.target.stat().st_mode)
        except OSError as e:
            raise StorageError(f"cannot read target {self.target}: {e}") from e

        if is_dir:
            self.process_directory(self.target)
        else:
            self.process_target(self.target)
        return self.buffer

    def process_directory(self, target: Path) -> None:
        """Process a directory as a single chart, else every archive below it."""
        try:
            self.process_target(target)
            return
        except MirrorError as e:
            original_error = e
            self.logger.debug("%s is not a chart, looking for archives: %s", target, e)

        for path in self._walk_archives(target):
            self.has_archive_matches = True
            try:
                self.process_target(path)
            except MirrorError as e:
                if not self.ignore_errors:
                    raise
                self.logger.warning("WARNING: cannot load chart %s: %s", path, e)
                self.exit_with_errors = True

        # Neither a chart nor a folder of charts
        if not self.has_archive_matches:
            raise original_error

    def process_target(self, target: Path) -> None:
        """Render one chart and append the images it declares."""
        self.logger.debug("Processing target: %s", target)

        chart = self.renderer.load(target)
        values = normalize_values(chart.values)
        rendered = self.renderer.render(chart, values)

        # Buffer is only extended once the whole chart rendered
        found = []
        for text in rendered.values():
            found.extend(scan_images(text))
        self.buffer.extend(found)
        self.logger.debug("Found %d images in %s", len(found), target)

    def _walk_archives(self, target: Path) -> list[Path]:
        def on_error(e: OSError) -> None:
            raise StorageError(f"cannot access {e.filename}: {e}") from e

        archives = []
        for dirpath, dirnames, filenames in os.walk(target, onerror=on_error):
            dirnames.sort()
            for name in sorted(filenames):
                if ARCHIVE_SUFFIX in name:
                    archives.append(Path(dirpath) / name)
        return archives
