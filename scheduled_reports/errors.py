# ============================================================================
# Scheduled Reports - Errors
# ============================================================================

from typing import List, Optional


class ReportingError(Exception):
    """Base class for reporting errors."""
    pass


class ReportNotFound(ReportingError):
    """A report definition does not exist."""
    pass


class UserNotFound(ReportingError):
    """No user with the given login exists in the user directory."""
    pass


class InvalidReportDefinition(ReportingError):
    """A report field (hour, period, format, channel, sub-reports) is invalid."""
    pass


class InvalidDisplayFormat(InvalidReportDefinition):
    """The displayFormat parameter is not one of the known values."""

    def __init__(self, value, available: List[int]):
        self.value = value
        self.available = list(available)
        super().__init__(
            f"Display format '{value}' is invalid. Supported values: "
            f"{', '.join(str(v) for v in self.available)}"
        )


class InvalidRecipientAddress(InvalidReportDefinition):
    """An additionalEmails entry is not a valid email address."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid email address ({address})")


class SegmentInUse(ReportingError):
    """A segment cannot be deactivated while active reports reference it."""

    def __init__(self, segment_id, descriptions: List[str]):
        self.segment_id = segment_id
        self.descriptions = list(descriptions)
        report_list = " and ".join(f"'{d}'" for d in self.descriptions)
        super().__init__(
            f"This segment cannot be deleted or deactivated because it is used "
            f"by the following scheduled reports: {report_list}"
        )


class RecipientResolutionAborted(ReportingError):
    """The report owner could not be resolved; the dispatch is skipped."""

    def __init__(self, login: str, reason: Optional[str] = None):
        self.login = login
        self.reason = reason
        super().__init__(f"Could not resolve email for owner '{login}': {reason}")


class DeliveryFailure(ReportingError):
    """The transport rejected a send for one recipient."""

    def __init__(self, filename: str, recipient: str, error: str):
        self.filename = filename
        self.recipient = recipient
        self.error = error
        super().__init__(
            f"An error occurred while sending '{filename}' to {recipient}. "
            f"Error was '{error}'"
        )


class TimezoneLookupError(ReportingError):
    """The timezone of a site could not be determined."""
    pass
