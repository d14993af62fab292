# ============================================================================
# Scheduled Reports - Recipient Resolver
# ============================================================================

import logging
from typing import Iterable, List, Optional

from .errors import RecipientResolutionAborted, UserNotFound
from .interfaces import UserDirectory
from .parameters import (
    ADDITIONAL_EMAILS_PARAMETER,
    EMAIL_ME_PARAMETER,
    EMAIL_ME_PARAMETER_DEFAULT_VALUE,
)

logger = logging.getLogger("reporting.recipients")


def _clean(addresses: Iterable[Optional[str]]) -> List[str]:
    """Drop blank addresses and duplicates, keeping first occurrences."""
    seen = set()
    result = []
    for address in addresses:
        address = (address or "").strip()
        if not address or address in seen:
            continue
        seen.add(address)
        result.append(address)
    return result


class RecipientResolver:
    """Derives the delivery addresses of one report instance."""

    def __init__(self, users: UserDirectory):
        self.users = users

    def resolve(self, report, current_user=None) -> List[str]:
        """
        Addresses for dispatching *report*: ``additionalEmails`` first, then
        the owner's address when ``emailMe`` is set.

        Raises RecipientResolutionAborted when the owner cannot be looked up.
        """
        parameters = report.parameters or {}
        emails = list(parameters.get(ADDITIONAL_EMAILS_PARAMETER) or [])

        if parameters.get(EMAIL_ME_PARAMETER, EMAIL_ME_PARAMETER_DEFAULT_VALUE):
            emails.append(self._owner_email(report, current_user))

        return _clean(emails)

    def _owner_email(self, report, current_user) -> str:
        if current_user is not None and current_user.login == report.owner_login:
            return current_user.email

        if report.owner_login == self.users.super_user_login:
            return self.users.get_super_user_email()

        try:
            return self.users.get_user(report.owner_login).email
        except UserNotFound as e:
            logger.warning("Owner '%s' of report %s not found: %s", report.owner_login, report.id, e)
            raise RecipientResolutionAborted(report.owner_login, str(e)) from e

    def preview(self, report, current_user=None) -> List[str]:
        """Addresses shown to the user editing *report*. Never raises, never sends."""
        parameters = report.parameters or {}
        emails = []

        if parameters.get(EMAIL_ME_PARAMETER, EMAIL_ME_PARAMETER_DEFAULT_VALUE) and current_user is not None:
            emails.append(current_user.email)

        emails.extend(parameters.get(ADDITIONAL_EMAILS_PARAMETER) or [])
        return _clean(emails)
