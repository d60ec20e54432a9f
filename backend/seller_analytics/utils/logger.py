import logging
import sys
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("seller_analytics")


def mask_secret(value: Optional[str]) -> str:
    """Return a log-safe representation of an API key."""
    if not value:
        return "<none>"
    value = str(value)
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"
