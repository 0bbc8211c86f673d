"""Forager CLI entry point."""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import ValidationError

load_dotenv()

from forager import __version__
from forager.config import get_settings
from forager.heartbeat import Heartbeat
from forager.pipeline import catch_up, run_cycle, source_state_path
from forager.scheduler import start_scheduler
from forager.storage import load_source_state

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

HEARTBEAT_MAX_DELAY = timedelta(minutes=5)

CONFIG_TEMPLATE = """# Forager Configuration
# Secrets (CDS_API_KEY, INGEST__WEBHOOK_SECRET) belong in .env, not here.

max_concurrency: 4

cds:
  base_url: https://cds.climate.copernicus.eu/api/v2
  poll_initial_seconds: 1.0
  poll_backoff_factor: 1.5
  poll_max_seconds: 120.0

tools:
  wgrib: wgrib
  wgrib2: wgrib2
  cdo: cdo
  gdalwarp: gdalwarp
  gdal_translate: gdal_translate

scheduler:
  interval_minutes: 360
  max_cycles_per_run: 12
"""

CATALOG_TEMPLATE = """# Datasets published from ERA5 monthly means.
# output_dir is relative to the configured output_dir.

datasets:
  - name: era5monthly-temperature-2-m-anomaly
    variable: 2m_temperature
    output_dir: era5monthly/temperature-2-m-anomaly
    anomaly: true
    metadata:
      name: average temperature at 2 m above ground anomaly
      unit: degC
      originalUnit: degK

  - name: era5monthly-precipitation-1-day-anomaly
    variable: total_precipitation
    output_dir: era5monthly/precipitation-1-day-anomaly
    anomaly: true
    metadata:
      name: average precipitation per day anomaly
      unit: mm
      originalUnit: m
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from forager.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory structure and configuration files."""
    try:
        settings = get_settings()
        settings.ensure_dirs()
        logger.info(f"Created data directories under {settings.data_dir}")

        config_path = settings.data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        if not settings.catalog_path.exists():
            settings.catalog_path.write_text(CATALOG_TEMPLATE)
            logger.info(f"Created dataset catalog: {settings.catalog_path}")
        else:
            logger.info(f"Dataset catalog already exists: {settings.catalog_path}")

        print(f"\n✓ Data directory initialized at {settings.data_dir}")
        print("\nNext steps:")
        print("1. Put CDS_API_KEY (UID:KEY) in .env")
        print("2. Review data/config.yaml and data/datasets.yaml")
        print("3. Run 'python -m forager run --once' to forage one month\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== Forager Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Output Directory: {settings.output_dir}")
        print(f"Temp Directory: {settings.temp_dir}")
        print(f"Clip Polygon: {settings.clip_by or '(none)'}")
        print(f"Max Concurrency: {settings.max_concurrency}\n")

        print("CDS:")
        print(f"  Base URL: {settings.cds.base_url}")
        print(
            f"  Poll Backoff: {settings.cds.poll_initial_seconds}s "
            f"x{settings.cds.poll_backoff_factor} up to {settings.cds.poll_max_seconds}s\n"
        )

        print("Tools:")
        for name, command in settings.tools.model_dump().items():
            print(f"  {name}: {command}")
        print()

        print("Scheduler:")
        print(f"  Interval: {settings.scheduler.interval_minutes} min")
        print(f"  Max Cycles Per Run: {settings.scheduler.max_cycles_per_run}\n")

        print("Secrets:")
        print(f"  CDS API Key: {'✓ Set' if settings.cds_api_key else '✗ Not set'}")
        print(f"  Ingest Webhook: {'✓ Enabled' if settings.ingest.enabled else '✗ Disabled'}")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display forage cursor and liveness. Exit code 1 when the forager looks down."""
    try:
        settings = get_settings()
        heartbeat = Heartbeat(settings.heartbeat_path)
        state = load_source_state(source_state_path(settings))

        print("\n=== Forager Status ===\n")

        last_beat = heartbeat.last_beat()
        down = heartbeat.is_stale(HEARTBEAT_MAX_DELAY)
        print(f"Last Beat: {last_beat.isoformat() if last_beat else '(never)'}")
        print(f"Cursor: {state.date or '(not started)'}")
        print(f"Remote Version: {state.last_updated or '(unknown)'}\n")

        print("Cached Normals:")
        if state.normals:
            for variable, months in sorted(state.normals.items()):
                print(f"  {variable}: {', '.join(sorted(months))}")
        else:
            print("  (None)")
        print()

        if down:
            print("❌ Forager is down (no heartbeat in the last 5 minutes).\n")
            return 1

        print("✓ Forager is up.\n")
        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Forage once, or start the periodic scheduler."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== Forager ===\n")
        print(f"Version: {__version__}")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Output Directory: {settings.output_dir}\n")

        if args.once:
            max_cycles = args.max_cycles or 1
            print(f"Running up to {max_cycles} cycle(s)...\n")
            if max_cycles == 1:
                outcomes = [asyncio.run(run_cycle(settings))]
            else:
                outcomes = asyncio.run(catch_up(settings, max_cycles))
            for outcome in outcomes:
                print(
                    f"  {outcome.status.value}: cursor={outcome.cursor} "
                    f"layers={len(outcome.outputs)}"
                )
            print("\nForage run complete.\n")
            return 0

        print("Starting scheduler...\n")
        start_scheduler(settings)

        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Forage failed: {e}", exc_info=True)
        print(f"\nForage failed: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Forager: incremental ERA5 monthly layers and anomalies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Forager {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory, configuration and dataset catalog",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display forage cursor, cached normals and liveness",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_run = subparsers.add_parser(
        "run",
        help="Forage new months from the CDS",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--once",
        action="store_true",
        help="Run cycles now and exit instead of starting the scheduler",
    )
    parser_run.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="With --once, keep going until caught up or N cycles ran",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
