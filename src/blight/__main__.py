import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from blight.presentation.cli import main as cli_main


logger = logging.getLogger("blight")


def _configure_logging() -> None:
    level_name = os.getenv("BLIGHT_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_help_surface() -> None:
    print("\nHelp:")
    print("- Run 'blight --help' for the list of commands.")
    print("- Storage issues: verify BLIGHT_DATABASE_URL and run 'blight init-db', or unset it for in-memory mode.")
    print("- Notification issues: check BLIGHT_WEBHOOK_URL and BLIGHT_NOTIFICATIONS_CHANNEL_ID.")


def main(argv=None) -> int:
    load_dotenv()
    _configure_logging()
    try:
        return cli_main(argv)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as exc:
        logger.exception("Blight command failed")
        print("An unexpected error occurred. No further changes were made.")
        print(f"Reason: {exc}")
        _print_help_surface()
        return 1


if __name__ == "__main__":
    sys.exit(main())
