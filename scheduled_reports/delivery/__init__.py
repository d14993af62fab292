# ============================================================================
# Scheduled Reports - Delivery Module
# ============================================================================
# Report channels and the mail transports they send through.
# ============================================================================

from .base import Channel, DeliveryResult, MailAttachment, MailTransport, ReportMessage
from .email import EmailChannel, SendGridTransport, SMTPTransport, build_transport
from .registry import ChannelRegistry

__all__ = [
    "Channel",
    "ChannelRegistry",
    "DeliveryResult",
    "EmailChannel",
    "MailAttachment",
    "MailTransport",
    "ReportMessage",
    "SendGridTransport",
    "SMTPTransport",
    "build_transport",
]
