"""
Logging setup for the gateway (loguru).

All modules log through `from loguru import logger`. This module only decides
where records go: a console sink for everything, and an optional file sink
that receives only audit near misses (records bound with
channel=AUDIT_NEAR_MISS_CHANNEL), so operators can alert on missing audit
coverage without parsing the full log.
"""

import sys
from typing import Optional

from loguru import logger

from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.constants import AUDIT_NEAR_MISS_CHANNEL, LOG_FORMAT


def _is_near_miss(record) -> bool:
    return record["extra"].get("channel") == AUDIT_NEAR_MISS_CHANNEL


def configure_logging(settings: Optional[GatewaySettings] = None) -> None:
    """
    Reset loguru sinks according to settings.

    Args:
        settings: Gateway settings (defaults are used when omitted)
    """
    settings = settings or GatewaySettings()

    logger.remove()
    if settings.log_json:
        logger.add(sys.stderr, level=settings.log_level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=settings.log_level.upper(), format=LOG_FORMAT)

    if settings.audit_near_miss_log_path:
        logger.add(
            str(settings.audit_near_miss_log_path),
            level="WARNING",
            filter=_is_near_miss,
            serialize=True,
            enqueue=True,
        )

    logger.debug(f"Logging configured | Level: {settings.log_level.upper()}")
