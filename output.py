"""Image list output formats for chart-mirror."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import yaml

from errors import StorageError
from logging_setup import get_logger

DEFAULT_IMAGES_FILE = "images.out"
DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"


class OutputType(Enum):
    FILE = "file"
    JSON = "json"
    YAML = "yaml"
    SKOPEO = "skopeo"
    STDOUT = "stdout"


class Sink(Protocol):
    def output(self, images: list[str]) -> None: ...


def _write(path: Path, content: str, logger: logging.Logger) -> None:
    try:
        path.write_text(content)
    except OSError as e:
        raise StorageError(f"cannot write images to {path}: {e}") from e
    logger.info("Images written to %s", path)


def split_image_reference(image: str) -> tuple[str, str, str]:
    """Split an image reference into registry, repository and tag.

    Digests are returned in place of the tag.
    """
    if "@" in image:
        name, tag = image.split("@", 1)
    else:
        name, tag = image, ""
        head, _, last = image.rpartition("/")
        if ":" in last:
            last, tag = last.split(":", 1)
            name = f"{head}/{last}" if head else last

    registry = DEFAULT_REGISTRY
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, name = first, rest

    return registry, name, tag or DEFAULT_TAG


def skopeo_document(images: list[str]) -> dict:
    """Group images into a `skopeo sync --src yaml` source document."""
    document: dict[str, dict] = {}
    for image in images:
        if not image:
            continue
        registry, repository, tag = split_image_reference(image)
        tags = document.setdefault(registry, {"images": {}})["images"].setdefault(repository, [])
        if tag not in tags:
            tags.append(tag)
    return document


@dataclass
class FileSink:
    path: Path
    logger: logging.Logger = field(default_factory=get_logger)

    def output(self, images: list[str]) -> None:
        _write(self.path, "".join(f"{image}\n" for image in images), self.logger)


@dataclass
class JSONSink:
    path: Path
    logger: logging.Logger = field(default_factory=get_logger)

    def output(self, images: list[str]) -> None:
        _write(self.path, json.dumps(images, indent=2) + "\n", self.logger)


@dataclass
class YAMLSink:
    path: Path
    logger: logging.Logger = field(default_factory=get_logger)

    def output(self, images: list[str]) -> None:
        _write(self.path, yaml.safe_dump(images, default_flow_style=False), self.logger)


@dataclass
class SkopeoSink:
    path: Path
    logger: logging.Logger = field(default_factory=get_logger)

    def output(self, images: list[str]) -> None:
        content = yaml.safe_dump(
            skopeo_document(images), default_flow_style=False, sort_keys=False
        )
        _write(self.path, content, self.logger)


@dataclass
class StdoutSink:
    def output(self, images: list[str]) -> None:
        for image in images:
            print(image)


def resolve_sink(option: str, logger: logging.Logger | None = None) -> Sink:
    """Build the sink for an output option of the form "kind[=filename]".

    Unknown kinds print to stdout.
    """
    logger = logger or get_logger()
    kind, _, filename = option.partition("=")
    path = Path(filename or DEFAULT_IMAGES_FILE).absolute()

    try:
        output_type = OutputType(kind)
    except ValueError:
        output_type = OutputType.STDOUT

    if output_type is OutputType.FILE:
        return FileSink(path, logger)
    if output_type is OutputType.JSON:
        return JSONSink(path, logger)
    if output_type is OutputType.YAML:
        return YAMLSink(path, logger)
    if output_type is OutputType.SKOPEO:
        return SkopeoSink(path, logger)
    return StdoutSink()
