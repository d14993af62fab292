# ============================================================================
# Scheduled Reports - Report Parameters
# ============================================================================
# Display formats and write-time validation of report parameters.  Errors
# raised here fail the create/update call; they never reach dispatch.
# ============================================================================

import re
from enum import IntEnum
from typing import Any, Dict, List

from .errors import InvalidDisplayFormat, InvalidRecipientAddress, InvalidReportDefinition
from .periods import PERIODS


class DisplayFormat(IntEnum):
    GRAPHS_ONLY_FOR_KEY_METRICS = 1  # Tables for all reports, graphs only for key metrics
    GRAPHS_ONLY = 2                  # Graphs only for all reports
    TABLES_AND_GRAPHS = 3            # Tables and graphs for all reports
    TABLES_ONLY = 4                  # Tables only for all reports


DEFAULT_DISPLAY_FORMAT = DisplayFormat.GRAPHS_ONLY_FOR_KEY_METRICS

DISPLAY_FORMAT_LABELS = {
    DisplayFormat.GRAPHS_ONLY_FOR_KEY_METRICS: "Display tables only (graphs only for key metrics)",
    DisplayFormat.GRAPHS_ONLY: "Display graphs only for all reports",
    DisplayFormat.TABLES_AND_GRAPHS: "Display tables and graphs for all reports",
    DisplayFormat.TABLES_ONLY: "Display only tables for all reports",
}

EMAIL_ME_PARAMETER = "emailMe"
EVOLUTION_GRAPH_PARAMETER = "evolutionGraph"
ADDITIONAL_EMAILS_PARAMETER = "additionalEmails"
DISPLAY_FORMAT_PARAMETER = "displayFormat"

EMAIL_ME_PARAMETER_DEFAULT_VALUE = True
EVOLUTION_GRAPH_PARAMETER_DEFAULT_VALUE = False

# parameter name -> mandatory
EMAIL_PARAMETERS = {
    EMAIL_ME_PARAMETER: False,
    EVOLUTION_GRAPH_PARAMETER: False,
    ADDITIONAL_EMAILS_PARAMETER: False,
    DISPLAY_FORMAT_PARAMETER: True,
}

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def is_valid_email(address: str) -> bool:
    """Validate email address format."""
    if not address:
        return False
    return bool(_EMAIL_PATTERN.match(address))


def value_is_true(value: Any) -> bool:
    """Loose boolean parsing for values coming from forms and JSON."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return value is True or value == 1


def parse_display_format(value: Any) -> DisplayFormat:
    available = [int(f) for f in DisplayFormat]
    # bools and fractional numbers would otherwise truncate onto a valid value
    if isinstance(value, bool):
        raise InvalidDisplayFormat(value, available)
    try:
        number = int(value)
        if isinstance(value, float) and number != value:
            raise ValueError(value)
        return DisplayFormat(number)
    except (TypeError, ValueError, OverflowError):
        raise InvalidDisplayFormat(value, available)


def check_additional_emails(additional_emails: Any) -> List[str]:
    """Trim entries, drop blanks, and reject the list if any entry is malformed."""
    if isinstance(additional_emails, str):
        additional_emails = [additional_emails]
    if not isinstance(additional_emails, (list, tuple)):
        raise InvalidReportDefinition(f"{ADDITIONAL_EMAILS_PARAMETER} must be a list of addresses")

    cleaned = []
    for email in additional_emails:
        email = str(email or "").strip()
        if not email:
            continue
        if not is_valid_email(email):
            raise InvalidRecipientAddress(email)
        cleaned.append(email)
    return cleaned


def validate_email_parameters(parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Return a normalized copy of email report parameters.

    Unknown keys are dropped. ``displayFormat`` falls back to the default
    when absent and must otherwise be one of ``DisplayFormat``.
    """
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise InvalidReportDefinition("Report parameters must be an object")
    parameters = dict(parameters)
    normalized: Dict[str, Any] = {}

    raw_format = parameters.get(DISPLAY_FORMAT_PARAMETER)
    if raw_format is None:
        normalized[DISPLAY_FORMAT_PARAMETER] = int(DEFAULT_DISPLAY_FORMAT)
    else:
        normalized[DISPLAY_FORMAT_PARAMETER] = int(parse_display_format(raw_format))

    # emailMe is an optional parameter
    if parameters.get(EMAIL_ME_PARAMETER) is None:
        normalized[EMAIL_ME_PARAMETER] = EMAIL_ME_PARAMETER_DEFAULT_VALUE
    else:
        normalized[EMAIL_ME_PARAMETER] = value_is_true(parameters[EMAIL_ME_PARAMETER])

    # evolutionGraph is an optional parameter
    if parameters.get(EVOLUTION_GRAPH_PARAMETER) is None:
        normalized[EVOLUTION_GRAPH_PARAMETER] = EVOLUTION_GRAPH_PARAMETER_DEFAULT_VALUE
    else:
        normalized[EVOLUTION_GRAPH_PARAMETER] = value_is_true(parameters[EVOLUTION_GRAPH_PARAMETER])

    # additionalEmails is an optional parameter
    if parameters.get(ADDITIONAL_EMAILS_PARAMETER) is not None:
        normalized[ADDITIONAL_EMAILS_PARAMETER] = check_additional_emails(
            parameters[ADDITIONAL_EMAILS_PARAMETER]
        )

    return normalized


def validate_hour(hour: Any) -> int:
    try:
        value = int(hour)
    except (TypeError, ValueError):
        raise InvalidReportDefinition(f"Hour '{hour}' must be an integer between 0 and 23")
    if not 0 <= value <= 23:
        raise InvalidReportDefinition(f"Hour '{hour}' must be an integer between 0 and 23")
    return value


def validate_period(period: Any) -> str:
    if period not in PERIODS:
        raise InvalidReportDefinition(
            f"Period '{period}' is invalid. Supported values: {', '.join(PERIODS)}"
        )
    return period
