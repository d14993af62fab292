# ============================================================================
# Scheduled Reports - Email Delivery Channel
# ============================================================================
# EmailChannel builds the report email for the html and pdf formats and
# sends one copy per recipient.  Transports: SMTP (default) and SendGrid.
# ============================================================================

import base64
import logging
import smtplib
from html import escape as html_escape
from typing import Any, Dict, List

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    ContentId,
    Disposition,
    Email,
    FileContent,
    FileName,
    FileType,
    Mail,
    To,
)

from ..display import DisplayHints
from ..errors import DeliveryFailure
from ..parameters import (
    DISPLAY_FORMAT_PARAMETER,
    EMAIL_PARAMETERS,
    EVOLUTION_GRAPH_PARAMETER,
    EVOLUTION_GRAPH_PARAMETER_DEFAULT_VALUE,
    DEFAULT_DISPLAY_FORMAT,
    parse_display_format,
    validate_email_parameters,
    value_is_true,
)
from ..periods import period_adjective
from ..recipients import RecipientResolver
from .base import Channel, DeliveryResult, MailAttachment, MailTransport, ReportMessage

logger = logging.getLogger("reporting.delivery.email")

EMAIL_TYPE = "email"

FORMAT_HTML = "html"
FORMAT_PDF = "pdf"

EMAIL_FORMATS = {
    FORMAT_HTML: "HTML",
    FORMAT_PDF: "PDF",
}


# ============================================================================
# Transports
# ============================================================================

class SMTPTransport(MailTransport):
    """Email delivery using an SMTP relay."""

    name = "smtp"

    def __init__(self, config):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.get("smtp_host"))

    def send(self, message: ReportMessage) -> DeliveryResult:
        recipient = ", ".join(message.recipients)
        host = self.config.get("smtp_host")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user")
        password = self.config.get("smtp_pass")

        if not self.is_configured():
            return DeliveryResult(
                success=False,
                recipient=recipient,
                channel=EMAIL_TYPE,
                error="SMTP not configured",
            )

        try:
            msg = message.to_mime()
            with smtplib.SMTP(host, port) as server:
                if self.config.get("smtp_starttls"):
                    server.starttls()
                if user:
                    server.login(user, password)
                server.sendmail(message.from_email, message.recipients, msg.as_string())

            logger.info(f"Email sent via SMTP to {recipient}")
            return DeliveryResult(success=True, recipient=recipient, channel=EMAIL_TYPE)

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth failed: {e}")
            return DeliveryResult(
                success=False,
                recipient=recipient,
                channel=EMAIL_TYPE,
                error="SMTP authentication failed",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed: {e}")
            return DeliveryResult(success=False, recipient=recipient, channel=EMAIL_TYPE, error=str(e))


class SendGridTransport(MailTransport):
    """Email delivery through the SendGrid API."""

    name = "sendgrid"

    def __init__(self, config):
        self.config = config
        self._client = None

    def is_configured(self) -> bool:
        return bool(self.config.get("sendgrid_api_key"))

    def _get_client(self) -> SendGridAPIClient:
        if self._client is None:
            self._client = SendGridAPIClient(self.config.get("sendgrid_api_key"))
        return self._client

    def build_mail(self, message: ReportMessage) -> Mail:
        mail = Mail(
            from_email=Email(message.from_email, message.from_name or None),
            to_emails=[To(address) for address in message.recipients],
            subject=message.subject,
            plain_text_content=message.body_text,
            html_content=message.body_html,
        )
        for att in message.attachments:
            attachment = Attachment(
                file_content=FileContent(base64.b64encode(att.content).decode("ascii")),
                file_name=FileName(att.filename),
                file_type=FileType(att.mime_type),
                disposition=Disposition(att.disposition),
            )
            if att.content_id:
                attachment.content_id = ContentId(att.content_id)
            mail.add_attachment(attachment)
        return mail

    def send(self, message: ReportMessage) -> DeliveryResult:
        recipient = ", ".join(message.recipients)

        if not self.is_configured():
            return DeliveryResult(
                success=False,
                recipient=recipient,
                channel=EMAIL_TYPE,
                error="SendGrid API key not configured",
            )

        try:
            response = self._get_client().send(self.build_mail(message))
        except Exception as e:
            # python-http-client raises HTTPError subclasses for 4xx/5xx
            logger.error(f"SendGrid send failed for {recipient}: {e}")
            return DeliveryResult(success=False, recipient=recipient, channel=EMAIL_TYPE, error=str(e))

        message_id = None
        if hasattr(response, "headers") and "X-Message-Id" in response.headers:
            message_id = response.headers["X-Message-Id"]

        if response.status_code in (200, 201, 202):
            logger.info(f"Email sent via SendGrid to {recipient}")
            return DeliveryResult(success=True, recipient=recipient, channel=EMAIL_TYPE, message_id=message_id)

        return DeliveryResult(
            success=False,
            recipient=recipient,
            channel=EMAIL_TYPE,
            error=f"SendGrid returned status {response.status_code}",
        )


def build_transport(config) -> MailTransport:
    """Transport selected by the ``email_provider`` setting."""
    provider = config.get("email_provider", "smtp")
    if provider == "sendgrid":
        return SendGridTransport(config)
    if provider != "smtp":
        logger.warning(f"Unknown email_provider '{provider}', using SMTP")
    return SMTPTransport(config)


# ============================================================================
# Channel
# ============================================================================

class EmailChannel(Channel):
    """The ``email`` report type."""

    channel_type = EMAIL_TYPE
    formats = EMAIL_FORMATS
    parameters = EMAIL_PARAMETERS
    allow_multiple_reports = True

    def __init__(self, config, transport: MailTransport, resolver: RecipientResolver):
        self.config = config
        self.transport = transport
        self.resolver = resolver

    def validate_parameters(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        return validate_email_parameters(parameters)

    def display_policy_hints(self, report) -> DisplayHints:
        parameters = report.parameters or {}
        raw_format = parameters.get(DISPLAY_FORMAT_PARAMETER)
        display_format = DEFAULT_DISPLAY_FORMAT if raw_format is None else parse_display_format(raw_format)
        evolution = parameters.get(EVOLUTION_GRAPH_PARAMETER, EVOLUTION_GRAPH_PARAMETER_DEFAULT_VALUE)
        return DisplayHints(display_format=display_format, evolution_graph=value_is_true(evolution))

    def resolve_recipients(self, report, current_user=None) -> List[str]:
        return self.resolver.resolve(report, current_user)

    def preview_recipients(self, report, current_user=None) -> List[str]:
        return self.resolver.preview(report, current_user)

    # ------------------------------------------------------------------
    # Message
    # ------------------------------------------------------------------

    def build_message(self, context) -> ReportMessage:
        """
        Build the email for one dispatch (recipients are added by deliver()).

        html: multipart/related, greeting followed by the rendered report.
        pdf and any other format: plain text greeting, report attached as
        ``{title}.pdf``.
        """
        adjective = period_adjective(context.period)
        message = ReportMessage(
            subject=f"Report {context.title} - {context.pretty_date}",
            from_email=self.config.get("from_email"),
            from_name=self.config.sender_name,
        )

        if context.report.format == FORMAT_HTML:
            segment_note = ""
            if context.segment_name:
                segment_note = f" Segment '{html_escape(context.segment_name)}' is applied to this report."
            message.multipart_subtype = "related"
            message.body_html = (
                f"Hello,<br/>Please find below your {adjective} report: {html_escape(context.title)}."
                f"{segment_note}<br/><br/>"
                f"{context.content.decode('utf-8')}"
            )
        else:
            segment_note = ""
            if context.segment_name:
                segment_note = f" Segment '{context.segment_name}' is applied to this report."
            message.body_text = (
                f"Hello,\nPlease find attached your {adjective} report: {context.title}."
                f"{segment_note}"
            )
            message.add_attachment(MailAttachment(
                content=context.content,
                mime_type="application/pdf",
                filename=f"{context.title}.pdf",
            ))

        for att in context.attachments:
            message.add_attachment(MailAttachment(
                content=att.content,
                mime_type=att.mime_type,
                filename=att.filename,
                content_id=att.content_id,
            ))

        return message

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, context, recipients: List[str]) -> List[DeliveryResult]:
        """
        Send one copy per recipient, in order.

        Raises DeliveryFailure on the first failed send unless
        ``suppress_delivery_errors`` is on, in which case the failure is
        logged and the remaining recipients are still tried.
        """
        message = self.build_message(context)
        suppress = bool(self.config.get("suppress_delivery_errors"))
        results: List[DeliveryResult] = []

        for recipient in recipients:
            message.add_to(recipient)
            try:
                result = self.transport.send(message)
            except Exception as e:
                result = DeliveryResult(success=False, recipient=recipient, channel=EMAIL_TYPE, error=str(e))
            finally:
                message.clear_recipients()

            results.append(result)
            if result.success:
                continue

            failure = DeliveryFailure(context.filename, recipient, result.error)
            if not suppress:
                raise failure
            logger.error(str(failure))

        return results
