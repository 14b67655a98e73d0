from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for worker and CLI processes."""
    logging.basicConfig(level=(level or "INFO").upper(), format=LOG_FORMAT)
    # aiohttp access logs are noisy at INFO when polling Cloudflare.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
