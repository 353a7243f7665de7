from dataclasses import dataclass
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


def user_exists(user_id: str) -> bool:
    # Users live in another service; an authenticated subject is taken as existing
    return bool(user_id)


def on_settled(invoice_id: str, user_id: str, amount: int) -> None:
    logger.info("invoice_settled", invoice_id=invoice_id, user_id=user_id, amount=amount)


@dataclass(frozen=True)
class Collaborators:
    """Hooks into the user and crediting components owned elsewhere."""

    user_exists: Callable[[str], bool] = user_exists
    on_settled: Callable[[str, str, int], None] = on_settled
