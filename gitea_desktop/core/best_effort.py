from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)


def ignore_failure(action: Callable[[], object], *, description: str) -> bool:
    """Run a secondary cleanup step whose failure must not affect the caller."""
    try:
        action()
    except Exception as exc:
        logger.debug("Ignored failure while %s: %s", description, exc)
        return False
    return True
