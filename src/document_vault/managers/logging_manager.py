"""
Centralised logger factory.

Every module obtains its logger through :func:`get_logger`, optionally with a bracketed
prefix that identifies the component in the log stream:

```python
from document_vault.managers.logging_manager import get_logger

logger = get_logger(prefix="[FamilyManager]")
logger.info("Family created: %s", group_id, extra={"group_id": group_id})
```
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from document_vault.config import settings

ROOT_LOGGER_NAME = "document_vault"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Prepends a component prefix to every message and merges caller `extra` fields."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            msg = f"{self.prefix} {msg}"
        return msg, kwargs


def _configure_root() -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    root.setLevel(level)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    _configured = True


def get_logger(name: Optional[str] = None, prefix: str = "") -> PrefixedLoggerAdapter:
    """
    Return a logger under the `document_vault` namespace.

    Args:
        name: Optional child logger name (e.g. ``"database"``).
        prefix: Bracketed component tag prepended to each message.
    """
    _configure_root()
    logger_name = f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME
    return PrefixedLoggerAdapter(logging.getLogger(logger_name), prefix=prefix)
