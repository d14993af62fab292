# ============================================================================
# Scheduled Reports - Base Delivery Types
# ============================================================================
# ReportMessage is the transport-neutral envelope built by a channel.  A
# MailTransport sends it; a Channel knows how to build it for one report
# type and how to deliver it to each recipient.
# ============================================================================

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Dict, List, Optional


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    recipient: str
    channel: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "recipient": self.recipient,
            "channel": self.channel,
            "message_id": self.message_id,
            "error": self.error,
        }


@dataclass
class MailAttachment:
    content: bytes
    mime_type: str
    filename: str
    content_id: Optional[str] = None
    disposition: str = "inline"


@dataclass
class ReportMessage:
    """
    One outgoing report email.

    ``multipart_subtype`` is ``related`` when the HTML body references its
    attachments through cid: URLs, ``mixed`` otherwise.
    """
    subject: str
    from_email: str
    from_name: str = ""
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    multipart_subtype: str = "mixed"
    attachments: List[MailAttachment] = field(default_factory=list)
    recipients: List[str] = field(default_factory=list)

    def add_to(self, address: str):
        self.recipients.append(address)

    def clear_recipients(self):
        self.recipients = []

    def add_attachment(self, attachment: MailAttachment):
        self.attachments.append(attachment)

    def to_mime(self) -> MIMEMultipart:
        """Build the MIME tree (used by the SMTP transport)."""
        msg = MIMEMultipart(self.multipart_subtype)
        msg["Subject"] = self.subject
        msg["From"] = formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email
        msg["To"] = ", ".join(self.recipients)

        if self.body_html is not None:
            msg.attach(MIMEText(self.body_html, "html", "utf-8"))
        else:
            msg.attach(MIMEText(self.body_text or "", "plain", "utf-8"))

        for att in self.attachments:
            maintype, _, subtype = att.mime_type.partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(att.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", att.disposition, filename=att.filename)
            if att.content_id:
                part.add_header("Content-ID", f"<{att.content_id}>")
            msg.attach(part)

        return msg


class MailTransport(ABC):
    """Sends a ReportMessage to the recipients currently set on it."""

    name: str = "base"

    @abstractmethod
    def send(self, message: ReportMessage) -> DeliveryResult:
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        pass


class Channel(ABC):
    """
    A report delivery type (``email``, ...).

    The engine never branches on the channel type; everything that differs
    between types is asked of the channel.
    """

    channel_type: str = "base"
    # format -> human readable label
    formats: Dict[str, str] = {}
    # parameter name -> mandatory
    parameters: Dict[str, bool] = {}
    allow_multiple_reports: bool = True

    @abstractmethod
    def validate_parameters(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """Return normalized parameters or raise InvalidReportDefinition."""
        pass

    @abstractmethod
    def display_policy_hints(self, report):
        """DisplayHints for *report*."""
        pass

    @abstractmethod
    def resolve_recipients(self, report, current_user=None) -> List[str]:
        pass

    def preview_recipients(self, report, current_user=None) -> List[str]:
        return self.resolve_recipients(report, current_user)

    @abstractmethod
    def build_message(self, context) -> ReportMessage:
        pass

    @abstractmethod
    def deliver(self, context, recipients: List[str]) -> List[DeliveryResult]:
        pass

    def describe(self) -> Dict[str, Any]:
        return {
            "type": self.channel_type,
            "formats": dict(self.formats),
            "parameters": dict(self.parameters),
            "allow_multiple_reports": self.allow_multiple_reports,
        }
