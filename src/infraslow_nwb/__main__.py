"""
CLI entry point for the NWB conversion.

    python -m infraslow_nwb config/M190114_A_MD.json
    python -m infraslow_nwb config/M190114_A_MD.json --sessions 201901221911 --overwrite
"""

import argparse
import logging
import sys
from pathlib import Path

from infraslow_nwb.pipeline.config import load_conversion_config
from infraslow_nwb.pipeline.runner import convert_animal
from infraslow_nwb.utils.exceptions import InfraslowNWBError
from infraslow_nwb.utils.logging import LOG_FORMATS, setup_logging


logger = logging.getLogger("infraslow_nwb")


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="infraslow_nwb",
        description="Convert derived infra-slow dynamics data to NWB, one file per session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m infraslow_nwb animal.json                          # All sessions
  python -m infraslow_nwb animal.json --sessions 201901221911  # One session
  python -m infraslow_nwb animal.json --output-dir nwb/ --overwrite
        """,
    )
    parser.add_argument("config", type=Path, help="Animal conversion config (JSON)")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory (default: animal.output_folder from the config)",
    )
    parser.add_argument(
        "--sessions",
        nargs="+",
        default=None,
        help="Session IDs to convert (default: all configured sessions)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        default="default",
        choices=sorted(LOG_FORMATS),
        help="Log line format (default: timestamped)",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace existing NWB files",
    )
    parser.add_argument(
        "--stop-on-error",
        action="store_true",
        default=None,
        help="Abort at the first failing session",
    )

    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, format_style=args.log_format)

    try:
        config = load_conversion_config(args.config)
        result = convert_animal(
            config,
            output_dir=args.output_dir,
            session_ids=args.sessions,
            overwrite=args.overwrite,
            stop_on_error=args.stop_on_error,
        )
    except (InfraslowNWBError, FileNotFoundError, FileExistsError) as e:
        logger.error(f"Conversion aborted: {e}")
        return 1

    for session in result.failed:
        logger.error(f"Session {session.session_id}: {session.error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
