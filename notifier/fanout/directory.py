"""Recipient resolution for broadcast events.

Which users may receive a broadcast (current, verified employees of an
organization, minus whoever triggered the event) is a business rule owned by
the platform. The fan-out only asks a ``RecipientDirectory`` and trusts the
answer.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional, Union

from notifier.domain.models import Recipient

OrganizationId = Union[int, str]


class RecipientDirectory(ABC):
    """Capability query for broadcast recipients."""

    @abstractmethod
    def find_eligible_referrers(
        self,
        organization_id: OrganizationId,
        exclude_user_id: Optional[str] = None,
    ) -> List[Recipient]:
        """
        Users who can act on a referral request at an organization.

        Implementations must only return users currently employed there with a
        verified company affiliation, and must leave out ``exclude_user_id``.

        Args:
            organization_id: Organization the request targets
            exclude_user_id: The requester, never notified about their own request

        Returns:
            Eligible recipients (possibly empty)
        """


class StaticRecipientDirectory(RecipientDirectory):
    """Directory backed by an in-memory mapping of organization id to members.

    Organization ids are compared as strings, so ``42`` and ``"42"`` match.
    """

    def __init__(self, members: Optional[Mapping[OrganizationId, Iterable[Recipient]]] = None):
        self._members: Dict[str, List[Recipient]] = {}
        for organization_id, recipients in (members or {}).items():
            for recipient in recipients:
                self.add(organization_id, recipient)

    def add(self, organization_id: OrganizationId, recipient: Recipient) -> None:
        self._members.setdefault(str(organization_id), []).append(recipient)

    def find_eligible_referrers(
        self,
        organization_id: OrganizationId,
        exclude_user_id: Optional[str] = None,
    ) -> List[Recipient]:
        return [
            recipient
            for recipient in self._members.get(str(organization_id), [])
            if recipient.user_id != exclude_user_id
        ]
