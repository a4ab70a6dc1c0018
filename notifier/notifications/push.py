"""Push channel transport.

No push provider is wired up yet. The transport reports success so push rows
end as ``sent`` instead of failing; a row that reached this point was
delivered as far as the platform currently supports.
"""

import logging
from typing import Optional

from .models import DeliveryResult, InAppContent

logger = logging.getLogger(__name__)


class PushTransport:
    """Stub transport; logs the notification it would have pushed."""

    def send(self, user_id: Optional[str], content: InAppContent) -> DeliveryResult:
        logger.info(
            f"Push notification not delivered (no provider configured): {content.title}",
            extra={"event": "push.skipped", "recipient_user_id": user_id},
        )
        return DeliveryResult.ok()
