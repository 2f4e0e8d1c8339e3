"""Configuration loading and validation for chart-mirror."""

import re
import tomllib
from dataclasses import dataclass
from pathlib import Path

from errors import ValidationError


DEFAULT_CONFIG_PATH = Path("chart-mirror.toml")

DEFAULTS = {
    "helm_path": "helm",
    "timeout": 30.0,
    "ignore_errors": False,
    "all_versions": False,
}

INDEX_FILE_NAME = "index.yaml"


@dataclass
class Config:
    helm_path: str
    timeout: float
    ignore_errors: bool
    all_versions: bool

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        helm_path_override: str | None = None,
        timeout_override: float | None = None,
        ignore_errors_override: bool = False,
        all_versions_override: bool = False,
    ) -> "Config":
        """Load configuration from TOML file with defaults.

        Boolean flags given on the command line can only switch a
        setting on; a file value of true is kept when the flag is absent.
        """
        config_data = dict(DEFAULTS)

        path = config_path or DEFAULT_CONFIG_PATH
        if path.exists():
            with open(path, "rb") as f:
                file_config = tomllib.load(f)
                config_data.update(file_config)

        if helm_path_override:
            config_data["helm_path"] = helm_path_override
        if timeout_override is not None:
            config_data["timeout"] = timeout_override
        if ignore_errors_override:
            config_data["ignore_errors"] = True
        if all_versions_override:
            config_data["all_versions"] = True

        return cls(
            helm_path=config_data["helm_path"],
            timeout=float(config_data["timeout"]),
            ignore_errors=bool(config_data["ignore_errors"]),
            all_versions=bool(config_data["all_versions"]),
        )


@dataclass(frozen=True)
class RepositoryConfig:
    """Remote chart repository and the local directory it is mirrored to."""

    url: str
    destination: Path
    username: str = ""
    password: str = ""
    ca_file: str = ""
    cert_file: str = ""
    key_file: str = ""

    @property
    def index_url(self) -> str:
        """URL of the repository index document."""
        return f"{self.url.rstrip('/')}/{INDEX_FILE_NAME}"

    @property
    def index_path(self) -> Path:
        """Final location of the mirrored index document."""
        return self.destination / INDEX_FILE_NAME


@dataclass(frozen=True)
class MirrorSelection:
    """Which charts and versions of the index get mirrored."""

    chart_name: str = ""
    chart_version: str = ""
    all_versions: bool = False

    @property
    def is_filtered(self) -> bool:
        return bool(self.chart_name or self.chart_version)

    def validate(self) -> re.Pattern:
        """Check the selection and return the compiled name pattern."""
        if self.chart_version and not self.chart_name:
            raise ValidationError(
                "chart version depends on a chart name, please specify one"
            )
        try:
            return re.compile(self.chart_name)
        except re.error as e:
            raise ValidationError(
                f"invalid chart name pattern {self.chart_name!r}: {e}"
            ) from e
