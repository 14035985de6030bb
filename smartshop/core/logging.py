import logging
import sys

from smartshop.core.config import settings

_configured = False

def setup_logging():
    """Attach a single stdout handler to the ``smartshop`` logger tree."""
    global _configured
    if _configured:
        return
    log = logging.getLogger("smartshop")
    log.setLevel(settings.LOG_LEVEL.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    log.addHandler(handler)
    _configured = True
