"""Shared fixtures for chart-mirror tests."""

import sys
from pathlib import Path

import pytest

# Add project root to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import MirrorSelection, RepositoryConfig
from errors import ParseError
from render import Chart

REPO_URL = "https://charts.example.com"

INDEX_YAML = """\
apiVersion: v1
entries:
  chart:
  - apiVersion: v1
    created: "2018-08-08T00:00:00.00000000Z"
    description: A Helm chart for your application
    digest: 3aa68d6cb66c14c1fcffc6dc6d0ad8a65b90b90c10f9f04125dc6fcaf8ef1b20
    name: chart
    version: 1.0.0
    urls:
    - https://charts.example.com/chart-1.0.0.tgz
  chart2:
  - apiVersion: v1
    created: "2018-08-08T00:00:00.00000000Z"
    description: A Helm chart for your application
    digest: 7ae62d60b61c14c1fcffc6dc670e72e62b91b91c10f9f04125dc67cef2ef0b21
    name: chart2
    version: 0.0.0-rc1
    urls:
    - https://charts.example.com/chart2-0.0.0-rc1.tgz
  - apiVersion: v1
    created: "2018-08-09T00:00:00.00000000Z"
    description: A Helm chart for your application
    digest: 1be62d60b61c14c1fcffc6dc670e72e62b91b91c10f9f04125dc67cef2ef0b22
    name: chart2
    version: 1.0.0
    urls:
    - https://charts.example.com/chart2-1.0.0.tgz
generated: "2018-08-09T00:00:00.00000000Z"
"""


@pytest.fixture
def index_yaml():
    """Sample repository index with chart@1.0.0 and chart2@{1.0.0, 0.0.0-rc1}."""
    return INDEX_YAML


@pytest.fixture
def repository(tmp_path):
    """Repository mirrored into a temporary destination."""
    return RepositoryConfig(url=REPO_URL, destination=tmp_path / "mirror")


@pytest.fixture
def selection():
    """Default selection: latest version of every chart."""
    return MirrorSelection()


class FakeRenderer:
    """Renderer serving canned documents keyed by target file name."""

    def __init__(self, charts: dict[str, dict[str, str]], values: dict | None = None):
        self.charts = charts
        self.values = values or {}
        self.loaded: list[Path] = []
        self.rendered_values: list[dict] = []

    def load(self, path: Path) -> Chart:
        self.loaded.append(path)
        if path.name not in self.charts:
            raise ParseError(f"{path} is not a chart")
        return Chart(name=path.name, version="1.0.0", path=path, values=self.values)

    def render(self, chart: Chart, values: dict) -> dict[str, str]:
        self.rendered_values.append(values)
        documents = self.charts[chart.path.name]
        if documents is None:
            raise ParseError(f"cannot render chart {chart.name}")
        return documents


@pytest.fixture
def fake_renderer_class():
    return FakeRenderer
