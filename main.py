#!/usr/bin/env python3
"""
Main entry point for the CI stage runner.

Supports:
  - Full pipeline run (default)
  - Configuration check and stage listing via --dry-run
  - Shared run directory via --run-dir
  - Environment overrides via --env KEY=VALUE

Stages (in order):
  check-environment → install-dependencies → run-tests → security-scan
  → build-image → push-image (skipped for change requests)
Archiving and cleanup always run once the stages are done.

Exit codes: 0 success, 1 failure, 2 unstable.
"""

import sys
import logging
import argparse
import yaml

from domain.config import PipelineConfig
from orchestration import Outcome
from pipeline.executor import PipelineExecutor
from utils.environment import parse_env_assignments
from utils.paths import create_timestamped_run_dir, prepare_run_dir

EXIT_CODES = {
    Outcome.SUCCESS: 0,
    Outcome.FAILURE: 1,
    Outcome.UNSTABLE: 2,
}


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def load_config(config_path: str) -> dict:
    """Load configuration from YAML file."""
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="CI Stage Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all enabled stages with config.yaml
  python main.py

  # Custom config, shared run directory
  python main.py --config ci.yaml --run-dir ./ci-output/build_42

  # Override environment values for this run
  python main.py --env BUILD_NUMBER=42 --env BRANCH_NAME=main

  # Abort the run after 20 minutes
  python main.py --timeout 1200

  # Validate config and list stages
  python main.py --dry-run
        """
    )

    parser.add_argument(
        "--config", type=str, default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Validate configuration and list stages without running them"
    )
    parser.add_argument(
        "--run-dir", type=str, default=None,
        help="Pre-created run directory (skips timestamped dir creation)"
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Wall-clock budget for all stages in seconds"
    )
    parser.add_argument(
        "--env", action="append", default=[], metavar="KEY=VALUE",
        help="Environment override for the run (repeatable)"
    )

    args = parser.parse_args(argv)

    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be positive")
    try:
        args.env = parse_env_assignments(args.env)
    except ValueError as e:
        parser.error(str(e))

    return args


def apply_overrides(config_dict: dict, args) -> dict:
    """Inject CLI arguments into the config dict (override YAML values)."""
    updated = dict(config_dict)
    run_metadata = dict(updated.get("run_metadata") or {})

    if args.timeout is not None:
        run_metadata["timeout_sec"] = args.timeout
    if args.env:
        environment = dict(updated.get("environment") or {})
        environment.update(args.env)
        updated["environment"] = environment

    updated["run_metadata"] = run_metadata
    return updated


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("CI Stage Runner")
    logger.info("=" * 60)

    try:
        logger.info(f"Loading configuration from: {args.config}")
        config_dict = apply_overrides(load_config(args.config), args)

        # Determine run directory
        run_metadata = config_dict["run_metadata"]
        if args.run_dir:
            run_dir = prepare_run_dir(args.run_dir)
            logger.info(f"Using shared run directory: {run_dir}")
        elif args.dry_run:
            run_dir = None
        else:
            run_name = run_metadata.get('run_name', 'pipeline_run')
            base_output = run_metadata.get('base_output_dir', './ci-output')
            run_dir = create_timestamped_run_dir(base_output, run_name)
            logger.info(f"Created timestamped run directory: {run_dir}")
        run_metadata["run_dir"] = run_dir

        config = PipelineConfig.from_dict(config_dict)
        logger.info("Configuration loaded and validated successfully")

        executor = PipelineExecutor(config)

        if args.dry_run:
            logger.info("Dry run mode - configuration is valid, exiting")
            logger.info(f"Enabled stages: {config.stages.enabled()}")
            for line in executor.describe_stages():
                logger.info(f"  {line}")
            return 0

        final_context = executor.run()
        executor.save_summary(final_context)

        if final_context.outcome is Outcome.SUCCESS:
            logger.info("✓ Pipeline completed successfully")
        elif final_context.outcome is Outcome.UNSTABLE:
            logger.warning("~ Pipeline is unstable")
        else:
            logger.error("✗ Pipeline failed")
        return EXIT_CODES[final_context.outcome]

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
