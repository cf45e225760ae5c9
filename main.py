"""Command-line entry point for vaultingest."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from vaultingest.config import ConfigLoadResult, load_config
from vaultingest.errors import ConfigError
from vaultingest.logging_utils import configure_logging
from vaultingest.runtime import IngestRuntime


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compress, upload and register a batch of images.")
    parser.add_argument("manifest", help="YAML or JSON manifest listing the files to upload")
    parser.add_argument("--config", default=None, help="Optional YAML configuration override")
    parser.add_argument("--log-level", default=None, help="Console log level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def load_settings(path: str | None) -> ConfigLoadResult:
    return load_config(path, include_sources=True)


def build_application(*, settings: ConfigLoadResult, logger) -> IngestRuntime:
    return IngestRuntime(settings.config, logger)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    config = settings.config
    logging_config = dict(config.get("logging", {}))
    logging_config.setdefault("log_dir", config.get("paths", {}).get("logs"))
    logger = configure_logging(logging_config, level=args.log_level)
    logger.info("Loaded configuration from: %s", ", ".join(settings.sources) or "<defaults>")

    application = build_application(settings=settings, logger=logger)
    try:
        success = asyncio.run(application.run(args.manifest))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 1
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.exception("Runtime terminated due to unexpected error: %s", exc)
        return 1
    return 0 if success else 2


if __name__ == "__main__":
    sys.exit(main())
