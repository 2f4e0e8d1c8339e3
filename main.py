"""chart-mirror - Mirror Helm chart repositories and list the images they use."""

import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path
from urllib.parse import urlparse

from config import Config, MirrorSelection, RepositoryConfig
from errors import MirrorError, ValidationError
from images import ImagesService
from logging_setup import get_logger, progress_bar, setup_logging, write_progress
from mirror import MirrorService, create_client
from output import resolve_sink
from render import ChartRenderer

PACKAGE_NAME = "chart-mirror"

MIRROR_DESCRIPTION = """\
Mirror Helm charts from a repository index into a local folder.

  chart-mirror mirror https://yourorg.com/charts /yourorg/charts

downloads index.yaml and every chart archive it lists into
/yourorg/charts.
"""

OUTPUT_HELP = (
    "where to write the images: stdout (default), file[=name], json[=name], "
    "yaml[=name] or skopeo[=name]; name defaults to images.out"
)


def parse_args() -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: chart-mirror.toml)",
    )
    common.add_argument(
        "-i", "--ignore-errors",
        action="store_true",
        default=False,
        help="Ignore errors while downloading or processing charts",
    )
    common.add_argument(
        "--helm-path",
        type=str,
        default=None,
        help="Override helm binary from config",
    )
    common.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Override HTTP timeout in seconds from config",
    )

    # Logging verbosity (mutually exclusive)
    verbosity_group = common.add_mutually_exclusive_group()
    verbosity_group.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output (DEBUG level)",
    )
    verbosity_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode (only warnings and errors)",
    )
    common.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write logs to file (always DEBUG level)",
    )

    parser = argparse.ArgumentParser(
        prog=PACKAGE_NAME,
        description="Mirror Helm chart repositories and list the images they use",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    mirror_parser = subparsers.add_parser(
        "mirror",
        parents=[common],
        help="Mirror a chart repository into a local folder",
        description=MIRROR_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    mirror_parser.add_argument("repo_url", help="URL of the chart repository")
    mirror_parser.add_argument("destination", help="Absolute path of the destination folder")
    mirror_parser.add_argument(
        "-a", "--all-versions",
        action="store_true",
        default=False,
        help="Get all the versions of the charts in the repository",
    )
    mirror_parser.add_argument("--chart-name", default="", help="Name of the chart to mirror")
    mirror_parser.add_argument(
        "--chart-version", default="", help="Exact version of the chart to mirror"
    )
    mirror_parser.add_argument("--username", default="", help="Chart repository username")
    mirror_parser.add_argument("--password", default="", help="Chart repository password")
    mirror_parser.add_argument(
        "--ca-file", default="", help="Verify HTTPS servers using this CA bundle"
    )
    mirror_parser.add_argument(
        "--cert-file", default="", help="Identify HTTPS client using this certificate file"
    )
    mirror_parser.add_argument(
        "--key-file", default="", help="Identify HTTPS client using this key file"
    )
    mirror_parser.add_argument(
        "--new-root-url",
        default="",
        help="New root URL of the chart repository (eg: https://mirror.local.lan/charts)",
    )

    images_parser = subparsers.add_parser(
        "inspect-images",
        parents=[common],
        help="Extract all the container images listed in each chart",
    )
    images_parser.add_argument(
        "target", help="Absolute path of a chart archive, chart folder or folder of charts"
    )
    images_parser.add_argument("-o", "--output", default="stdout", help=OUTPUT_HELP)

    subparsers.add_parser("version", help="Show the chart-mirror version")

    return parser.parse_args()


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return "http" in parsed.scheme and bool(parsed.netloc)


def validate_mirror_args(args: argparse.Namespace) -> None:
    """Reject unusable mirror arguments before any I/O."""
    if not _is_http_url(args.repo_url):
        raise ValidationError(f"not a valid repository URL: {args.repo_url!r}")
    if not Path(args.destination).is_absolute():
        raise ValidationError(
            f"please provide a full path for destination folder: {args.destination!r}"
        )
    if args.new_root_url and not _is_http_url(args.new_root_url):
        raise ValidationError(f"new-root-url not a valid URL: {args.new_root_url!r}")
    if args.chart_version and not args.chart_name:
        raise ValidationError("chart version depends on a chart name, please specify one")


def run_mirror(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    validate_mirror_args(args)

    repository = RepositoryConfig(
        url=args.repo_url,
        destination=Path(args.destination),
        username=args.username,
        password=args.password,
        ca_file=args.ca_file,
        cert_file=args.cert_file,
        key_file=args.key_file,
    )
    selection = MirrorSelection(
        chart_name=args.chart_name,
        chart_version=args.chart_version,
        all_versions=config.all_versions,
    )
    selection.validate()

    logger.info("Repository URL: %s", repository.url)
    logger.info("Destination: %s", repository.destination)
    if args.new_root_url:
        logger.info("New root URL: %s", args.new_root_url)

    def on_progress(completed: int, total: int) -> None:
        write_progress(progress_bar("Downloading", completed, total))
        if completed == total:
            print()  # Newline after progress bar

    with create_client(repository, timeout=config.timeout) as client:
        service = MirrorService(
            repository,
            selection,
            client,
            ignore_errors=config.ignore_errors,
            new_root_url=args.new_root_url,
            logger=logger,
        )
        result = service.run(on_progress=on_progress)

    logger.info("")
    logger.info("=" * 50)
    logger.info("Mirror Summary")
    logger.info("=" * 50)
    logger.info("Chart versions in index: %d", result.total_entries)
    logger.info("Selected: %d", result.selected_entries)
    logger.info("Downloaded: %d", result.downloaded)
    if args.new_root_url:
        logger.info("Rewritten URLs: %d", result.replaced_urls)
    logger.info("Index: %s", result.index_path)

    if result.failed > 0:
        logger.warning("Failed downloads (ignored): %d", result.failed)
        logger.warning("Mirror completed with errors.")
    else:
        logger.info("Mirror completed successfully!")
    return 0


def run_inspect_images(args: argparse.Namespace, config: Config, logger: logging.Logger) -> int:
    target = Path(args.target)
    if not target.is_absolute():
        raise ValidationError(
            f"please provide a full path for [folder|tgzfile]: {args.target!r}"
        )

    sink = resolve_sink(args.output, logger)
    renderer = ChartRenderer(helm_path=config.helm_path, logger=logger)
    service = ImagesService(
        target,
        renderer,
        ignore_errors=config.ignore_errors,
        logger=logger,
    )

    images = service.images()
    logger.debug("Found %d images", len(images))
    sink.output(images)

    if service.exit_with_errors:
        logger.warning("Some charts could not be processed (ignored).")
    return 0


def run_version() -> int:
    try:
        print(metadata.version(PACKAGE_NAME))
    except metadata.PackageNotFoundError:
        print("unknown")
    return 0


def main() -> int:
    args = parse_args()

    if args.command == "version":
        return run_version()

    # Setup logging first
    verbosity = 1 if args.verbose else (-1 if args.quiet else 0)
    setup_logging(verbosity=verbosity, log_file=args.log_file)
    logger = get_logger()

    logger.debug("Loading configuration...")
    try:
        config = Config.load(
            config_path=args.config,
            helm_path_override=args.helm_path,
            timeout_override=args.timeout,
            ignore_errors_override=args.ignore_errors,
            all_versions_override=getattr(args, "all_versions", False),
        )
    except (OSError, ValueError) as e:
        logger.error("Error loading configuration: %s", e)
        return 1

    try:
        if args.command == "mirror":
            return run_mirror(args, config, logger)
        return run_inspect_images(args, config, logger)
    except MirrorError as e:
        logger.error("Error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
