"""
Command-line interface and entry points for releaseflow.

Provides the public functions hosts call from build scripts or CI jobs, and
the ``releaseflow`` console script:

    releaseflow full-release release.yml --packager docker --exclude-announcer twitter
    releaseflow validate release.yml
    releaseflow adjust-changelog out/checksums CHANGELOG.md
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from releaseflow.changelog.checksums import adjust_changelog_from_directory
from releaseflow.core.exceptions import ConfigurationError
from releaseflow.core.logger import configure_root_logger, get_logger
from releaseflow.models.filter_rules import FilterRules
from releaseflow.orchestrator import ReleaseOrchestrator
from releaseflow.pipeline.stages import FULL_RELEASE_STAGES, stages_named

logger = get_logger(__name__)


# (flag, FilterRules.from_options keyword, help)
FILTER_FLAGS = (
    ("--deployer", "included_deployers", "Include a deployer by type"),
    ("--exclude-deployer", "excluded_deployers", "Exclude a deployer by type"),
    ("--deployer-name", "included_deployer_names", "Include a deployer by name"),
    ("--exclude-deployer-name", "excluded_deployer_names", "Exclude a deployer by name"),
    ("--uploader", "included_uploaders", "Include an uploader by type"),
    ("--exclude-uploader", "excluded_uploaders", "Exclude an uploader by type"),
    ("--uploader-name", "included_uploader_names", "Include an uploader by name"),
    ("--exclude-uploader-name", "excluded_uploader_names", "Exclude an uploader by name"),
    ("--distribution", "included_distributions", "Include a distribution by name"),
    ("--exclude-distribution", "excluded_distributions", "Exclude a distribution by name"),
    ("--packager", "included_packagers", "Include a packager by type"),
    ("--exclude-packager", "excluded_packagers", "Exclude a packager by type"),
    ("--announcer", "included_announcers", "Include an announcer by type"),
    ("--exclude-announcer", "excluded_announcers", "Exclude an announcer by type"),
    ("--select-type", "included_types", "Include any handler by type"),
    ("--exclude-type", "excluded_types", "Exclude any handler by type"),
    ("--select-name", "included_names", "Include any handler by name"),
    ("--exclude-name", "excluded_names", "Exclude any handler by name"),
)


def load_config(config_path: str) -> Dict[str, Any]:
    """Read a JSON or YAML release configuration file."""
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_file, "r", encoding="utf-8") as f:
        if config_file.suffix == ".json":
            config = json.load(f)
        elif config_file.suffix in (".yaml", ".yml"):
            import yaml

            config = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_file.suffix}. Use .json or .yaml")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} does not contain a mapping")
    logger.info(f"Loaded config from {config_path}")
    return config


def main(
    config_path: Optional[str] = None,
    config_dict: Optional[Dict[str, Any]] = None,
    *,
    filters: Optional[FilterRules] = None,
    dry_run: bool = False,
    skip: bool = False,
    run_id: Optional[str] = None,
    max_workers: int = 1,
    stages: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Run a full release.

    Can be called with either:
    - A config file path (JSON/YAML)
    - A config dictionary (programmatic)

    Args:
        config_path: Path to JSON/YAML configuration file
        config_dict: Direct configuration dictionary
        filters: Include/exclude rules for handlers
        dry_run: Ask every handler not to touch remote systems
        skip: Do nothing and report ``skipped``
        run_id: Run identifier (generated when omitted)
        max_workers: Thread pool size for non fail-fast stages
        stages: Names of the full-release stages to run (default: all)

    Returns:
        Dict with ``status`` and the serialized PipelineResult under ``result``.

    Raises:
        ValueError: If neither config_path nor config_dict provided
        ConfigurationError: If the configuration is invalid

    Example:
        >>> from releaseflow.cli import main
        >>> outcome = main(config_dict={"project": {"name": "app"}}, dry_run=True)
        >>> outcome["status"]
        'succeeded'
    """
    if skip:
        logger.info("Execution has been explicitly skipped.")
        return {"status": "skipped", "result": None}

    try:
        if config_dict:
            config = config_dict
            logger.info("Using provided config dictionary")
        elif config_path:
            config = load_config(config_path)
        else:
            raise ValueError("Either config_path or config_dict must be provided")

        orchestrator = ReleaseOrchestrator(
            run_id,
            dry_run=dry_run,
            stages=stages_named(stages) if stages else FULL_RELEASE_STAGES,
            max_workers=max_workers,
        )
        result = orchestrator.run(config, filters)
        return {"status": result.status.value, "result": result.to_dict()}

    except Exception as e:
        logger.error(f"Release failed: {e}")
        raise


def validate_config(config_path: str, filters: Optional[FilterRules] = None) -> bool:
    """
    Validate configuration and selection without running any handler.

    Raises:
        ConfigurationError: If the configuration is invalid or an active
            handler has no adapter.
    """
    config = load_config(config_path)
    logger.info(f"Validating config: {config_path}")
    selection = ReleaseOrchestrator().plan(config, filters)
    for candidate in selection.candidates:
        state = "active" if candidate.decision.active else "inactive"
        logger.info(f"{candidate.identity}: {state} ({candidate.decision.reason})")
    logger.info("Configuration is valid")
    return True


def _add_filter_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("handler selection")
    for flag, dest, help_text in FILTER_FLAGS:
        group.add_argument(flag, dest=dest, action="append", metavar="VALUE", help=help_text)


def _filters_from_args(args: argparse.Namespace) -> FilterRules:
    return FilterRules.from_options(**{dest: getattr(args, dest) for _, dest, _ in FILTER_FLAGS})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="releaseflow", description="Release pipeline runner")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    release_parser = subparsers.add_parser("full-release", help="Run every release stage")
    release_parser.add_argument("config", help="Path to configuration file (JSON or YAML)")
    release_parser.add_argument("--dry-run", action="store_true", help="Do not touch remote systems")
    release_parser.add_argument("--skip", action="store_true", help="Skip execution")
    release_parser.add_argument("--run-id", help="Run identifier")
    release_parser.add_argument("--max-workers", type=int, default=1, help="Parallel handlers per stage")
    release_parser.add_argument(
        "--stage",
        dest="stages",
        action="append",
        choices=[s.name for s in FULL_RELEASE_STAGES],
        help="Run only this stage (repeatable)",
    )
    _add_filter_flags(release_parser)

    validate_parser = subparsers.add_parser("validate", help="Validate configuration without running")
    validate_parser.add_argument("config", help="Path to configuration file (JSON or YAML)")
    _add_filter_flags(validate_parser)

    changelog_parser = subparsers.add_parser(
        "adjust-changelog", help="Replace sha256:<file> placeholders in a changelog"
    )
    changelog_parser.add_argument("checksum_directory", help="Directory holding checksums_sha256.txt")
    changelog_parser.add_argument("changelog", help="Changelog file rewritten in place")
    return parser


def cli(argv: Optional[List[str]] = None) -> None:
    """Console entry point; exits 0 on success and 1 on any failure."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_root_logger("DEBUG" if args.verbose else "INFO")

    if args.command == "full-release":
        try:
            outcome = main(
                config_path=args.config,
                filters=_filters_from_args(args),
                dry_run=args.dry_run,
                skip=args.skip,
                run_id=args.run_id,
                max_workers=args.max_workers,
                stages=args.stages,
            )
        except Exception:
            sys.exit(1)
        print(json.dumps(outcome, indent=2))
        sys.exit(0 if outcome["status"] in ("succeeded", "skipped") else 1)

    elif args.command == "validate":
        try:
            validate_config(args.config, _filters_from_args(args))
            sys.exit(0)
        except Exception as e:
            logger.error(f"Validation failed: {e}")
            sys.exit(1)

    elif args.command == "adjust-changelog":
        try:
            adjust_changelog_from_directory(args.checksum_directory, args.changelog)
            sys.exit(0)
        except Exception as e:
            logger.error(f"Changelog adjustment failed: {e}")
            sys.exit(1)

    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    cli()
