"""Tests for images.py."""

import pytest

from errors import ParseError, StorageError
from images import ImagesService, normalize_values, sanitize_image_string, scan_images

DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
spec:
  template:
    spec:
      initContainers:
        - image: busybox:1.36
      containers:
        - name: app
          image: "nginx:1.14.2"
        - name: cache
          image: redis:6
"""


class TestSanitizeImageString:
    """Tests for sanitize_image_string()."""

    @pytest.mark.parametrize(
        "line, expected",
        [
            ('    image: "nginx:1.14.2"', "nginx:1.14.2"),
            ("  - image: redis:6", "redis:6"),
            ('- image: "quay.io/org/app@sha256:abc"', "quay.io/org/app@sha256:abc"),
            ("image:   alpine  ", "alpine"),
        ],
    )
    def test_sanitizes(self, line, expected):
        """Quotes, list markers and the image key are removed."""
        assert sanitize_image_string(line) == expected

    @pytest.mark.parametrize("line", ['    image: "nginx:1.14.2"', "  - image: redis:6"])
    def test_idempotent(self, line):
        """Sanitizing a sanitized reference changes nothing."""
        once = sanitize_image_string(line)
        assert sanitize_image_string(once) == once

    def test_only_two_quotes_removed(self):
        """At most two double quotes are stripped."""
        assert sanitize_image_string('image: "a""b"') == 'a"b"'

    def test_keeps_other_keys(self):
        """Lines with other image-like keys keep their key."""
        assert sanitize_image_string("  pullImage: foo") == "pullImage: foo"


class TestScanImages:
    """Tests for scan_images()."""

    def test_extracts_in_line_order(self):
        """Every image line is reported in order."""
        assert scan_images(DEPLOYMENT) == ["busybox:1.36", "nginx:1.14.2", "redis:6"]

    def test_duplicates_kept(self):
        """Duplicates are not removed."""
        assert scan_images("image: a\nimage: a\n") == ["a", "a"]

    def test_no_images(self):
        """Text without image lines gives nothing."""
        assert scan_images("kind: Service\n") == []

    def test_crlf_line_endings(self):
        """A carriage return before the newline is not part of the image."""
        assert scan_images("image: a\r\nimage: b\r\n") == ["a", "b"]

    def test_only_newline_splits_lines(self):
        """Other line separators stay inside the line."""
        assert scan_images("image: a\x0bimage: b\n") == ["a\x0bimage: b"]
        assert scan_images("image: a\u2028b\n") == ["a\u2028b"]


class TestNormalizeValues:
    """Tests for normalize_values()."""

    def test_nested_nulls_replaced(self):
        """Nulls at any depth become empty strings."""
        values = {
            "image": {"repository": "nginx", "tag": None},
            "sidecars": [None, {"image": None}],
            "replicas": 1,
            "enabled": False,
        }

        assert normalize_values(values) == {
            "image": {"repository": "nginx", "tag": ""},
            "sidecars": ["", {"image": ""}],
            "replicas": 1,
            "enabled": False,
        }

    def test_input_not_mutated(self):
        """The original tree is left untouched."""
        values = {"a": {"b": None}}
        normalize_values(values)
        assert values == {"a": {"b": None}}

    def test_null_root(self):
        """A null root becomes an empty string."""
        assert normalize_values(None) == ""


class TestImagesService:
    """Tests for ImagesService.images()."""

    def test_single_archive(self, tmp_path, fake_renderer_class):
        """A single archive target is rendered directly."""
        target = tmp_path / "app.tgz"
        target.write_bytes(b"")
        renderer = fake_renderer_class({"app.tgz": {"deployment.yaml": DEPLOYMENT}})

        images = ImagesService(target, renderer).images()

        assert images == ["busybox:1.36", "nginx:1.14.2", "redis:6"]

    def test_values_normalized_before_render(self, tmp_path, fake_renderer_class):
        """The renderer receives values with nulls replaced."""
        target = tmp_path / "app.tgz"
        target.write_bytes(b"")
        renderer = fake_renderer_class({"app.tgz": {}}, values={"image": {"tag": None}})

        ImagesService(target, renderer).images()

        assert renderer.rendered_values == [{"image": {"tag": ""}}]

    def test_document_then_line_order(self, tmp_path, fake_renderer_class):
        """Images follow document order, then line order."""
        target = tmp_path / "app.tgz"
        target.write_bytes(b"")
        renderer = fake_renderer_class(
            {"app.tgz": {"b.yaml": "image: b1\nimage: b2\n", "a.yaml": "image: a1\n"}}
        )

        assert ImagesService(target, renderer).images() == ["b1", "b2", "a1"]

    def test_single_target_failure_is_fatal(self, tmp_path, fake_renderer_class):
        """A single target that cannot load fails even when ignoring errors."""
        target = tmp_path / "broken.tgz"
        target.write_bytes(b"")

        with pytest.raises(ParseError):
            ImagesService(target, fake_renderer_class({}), ignore_errors=True).images()

    def test_missing_target(self, tmp_path, fake_renderer_class):
        """An unreadable target raises StorageError."""
        with pytest.raises(StorageError, match="cannot read target"):
            ImagesService(tmp_path / "missing", fake_renderer_class({})).images()

    def test_directory_chart(self, tmp_path, fake_renderer_class):
        """A directory that is a chart is processed as a whole."""
        chart_dir = tmp_path / "app"
        chart_dir.mkdir()
        (chart_dir / "nested.tgz").write_bytes(b"")
        renderer = fake_renderer_class({"app": {"d.yaml": "image: app:1\n"}})

        service = ImagesService(chart_dir, renderer)

        assert service.images() == ["app:1"]
        assert renderer.loaded == [chart_dir]
        assert service.has_archive_matches is False

    def test_directory_of_archives(self, tmp_path, fake_renderer_class):
        """Archives are found recursively, in lexical walk order."""
        root = tmp_path / "charts"
        (root / "sub").mkdir(parents=True)
        (root / "b.tgz").write_bytes(b"")
        (root / "a.tgz").write_bytes(b"")
        (root / "sub" / "c.tgz").write_bytes(b"")
        (root / "README.md").write_text("docs")
        renderer = fake_renderer_class(
            {
                "a.tgz": {"d.yaml": "image: a\n"},
                "b.tgz": {"d.yaml": "image: b\n"},
                "c.tgz": {"d.yaml": "image: c\n"},
            }
        )

        service = ImagesService(root, renderer)

        assert service.images() == ["a", "b", "c"]
        assert service.has_archive_matches is True
        assert service.exit_with_errors is False

    def test_failed_archive_strict(self, tmp_path, fake_renderer_class):
        """A broken archive aborts the walk without ignore_errors."""
        root = tmp_path / "charts"
        root.mkdir()
        (root / "a.tgz").write_bytes(b"")
        (root / "b.tgz").write_bytes(b"")
        renderer = fake_renderer_class({"a.tgz": None, "b.tgz": {"d.yaml": "image: b\n"}})

        with pytest.raises(ParseError, match="cannot render"):
            ImagesService(root, renderer).images()

    def test_failed_archive_ignored(self, tmp_path, fake_renderer_class, caplog):
        """A broken archive is skipped and flagged with ignore_errors."""
        root = tmp_path / "charts"
        root.mkdir()
        (root / "a.tgz").write_bytes(b"")
        (root / "b.tgz").write_bytes(b"")
        renderer = fake_renderer_class({"a.tgz": None, "b.tgz": {"d.yaml": "image: b\n"}})

        service = ImagesService(root, renderer, ignore_errors=True)

        assert service.images() == ["b"]
        assert service.exit_with_errors is True
        assert "cannot load chart" in caplog.text

    def test_empty_non_chart_directory(self, tmp_path, fake_renderer_class):
        """A directory with no chart and no archives reports the load error."""
        root = tmp_path / "empty"
        root.mkdir()

        with pytest.raises(ParseError, match="is not a chart"):
            ImagesService(root, fake_renderer_class({}), ignore_errors=True).images()
