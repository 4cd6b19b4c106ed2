# Logging setup for the plugin process

import logging
import sys

logger = logging.getLogger("quickshare")

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """
    Configures the root logger for the plugin.
    Safe to call more than once; later calls only change the level.
    """
    global _configured
    resolved = getattr(logging, level.upper(), logging.INFO)
    if _configured:
        logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    # Silence noisy libraries
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    _configured = True
