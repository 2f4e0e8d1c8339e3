"""Error types for chart-mirror."""


class MirrorError(Exception):
    """Base class for all chart-mirror failures."""


class ValidationError(MirrorError):
    """Invalid arguments or filter settings, raised before any I/O."""


class NetworkError(MirrorError):
    """Fetching the index or an archive failed."""


class StorageError(MirrorError):
    """Reading, writing, relocating or walking local files failed."""


class ParseError(MirrorError):
    """An index, chart archive or template could not be loaded or rendered."""
