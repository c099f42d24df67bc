import sys

import structlog
from dotenv import load_dotenv

from hello_api.app import create_app
from hello_api.config import Settings, check_settings
from hello_api.errors import ConfigError
from hello_api.log import configure_logging
from hello_api.server import Listener, log_uncaught_exception

logger = structlog.get_logger(__name__)


def main() -> int:
    """Run the Hello World API until it is stopped; return the exit code."""
    load_dotenv()
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        logger.error("invalid configuration, terminating", error=str(exc))
        return 1

    configure_logging(settings)
    sys.excepthook = log_uncaught_exception
    check_settings(settings)
    return Listener(create_app(settings), settings).run()


if __name__ == "__main__":
    sys.exit(main())
