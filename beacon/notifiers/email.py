"""
Email SMTP notifier.
"""

import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from beacon.config import EmailDeliveryConfig
from beacon.database.models import NotificationRecord, NotificationSettings
from .base import DeliveryChannel, NotificationResult, Recipient

PRIORITY_PREFIX = {
    "low": "[Info]",
    "medium": "[Alert]",
    "high": "[Important]",
    "critical": "[CRITICAL]",
}

PRIORITY_COLOR = {
    "low": "#3498DB",
    "medium": "#2ECC71",
    "high": "#FFA500",
    "critical": "#FF0000",
}


def create_subject(record: NotificationRecord) -> str:
    """Subject line for a single record: priority prefix plus title."""
    prefix = PRIORITY_PREFIX.get(record.priority, "[Alert]")
    return f"{prefix} {record.title}"


def create_digest_subject(period: str, count: int) -> str:
    return f"Your {period} alerts digest - {count} notifications"


class EmailNotifier(DeliveryChannel):
    """Sends records via email SMTP."""

    name = "email"

    def __init__(self, config: EmailDeliveryConfig):
        """
        Initialize email notifier.

        Args:
            config: SMTP connection and sender settings
        """
        self.config = config

    def is_configured(self) -> bool:
        """An unconfigured transport is a normal state; sends are skipped."""
        return bool(self.config.smtp_host and self.config.from_address)

    def send(
        self,
        record: NotificationRecord,
        recipient: Recipient,
        settings: NotificationSettings,
    ) -> NotificationResult:
        """Send record via email."""
        if not self.is_configured():
            return NotificationResult.skip(self.name, "email transport not configured")
        if not recipient.email:
            return NotificationResult.skip(self.name, "recipient has no email address")

        message = self._create_message(
            subject=create_subject(record),
            to_address=recipient.email,
            text_body=self._create_text_body(record),
            html_body=self._create_body(record),
        )
        return self._deliver(message)

    def send_digest(
        self,
        records: list[NotificationRecord],
        recipient: Recipient,
        period: str,
    ) -> NotificationResult:
        """
        Send one email summarizing several records.

        Args:
            records: Records in the digest period, oldest first
            recipient: Target user
            period: "hourly", "daily" or "weekly"

        Returns:
            NotificationResult; skipped when there is nothing to send
        """
        if not records:
            return NotificationResult.skip(self.name, "nothing to digest")
        if not self.is_configured():
            return NotificationResult.skip(self.name, "email transport not configured")
        if not recipient.email:
            return NotificationResult.skip(self.name, "recipient has no email address")

        message = self._create_message(
            subject=create_digest_subject(period, len(records)),
            to_address=recipient.email,
            text_body=self._create_digest_text(records, period),
            html_body=self._create_digest_body(records, period),
        )
        return self._deliver(message)

    def _deliver(self, message: MIMEMultipart) -> NotificationResult:
        try:
            with smtplib.SMTP(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=self.config.timeout_seconds,
            ) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.smtp_user:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.send_message(message)

            return NotificationResult(success=True, channel=self.name)

        except smtplib.SMTPAuthenticationError as e:
            return NotificationResult(
                success=False,
                channel=self.name,
                error=f"Authentication failed: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.name,
                error=f"SMTP error: {str(e)}",
            )

    def _create_message(
        self, subject: str, to_address: str, text_body: str, html_body: str
    ) -> MIMEMultipart:
        """Create email message."""
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.config.from_address
        message["To"] = to_address

        # Plain text version
        message.attach(MIMEText(text_body, "plain"))

        # HTML version
        message.attach(MIMEText(html_body, "html"))

        return message

    def _asset_url(self, record: NotificationRecord) -> Optional[str]:
        if not record.asset_symbol:
            return None
        return f"{self.config.app_url.rstrip('/')}/assets/{record.asset_symbol}"

    def _create_text_body(self, record: NotificationRecord) -> str:
        """Create plain text email body."""
        sent = record.sent_at.strftime("%Y-%m-%d %H:%M:%S") if record.sent_at else ""
        link = self._asset_url(record)
        return f"""
Beacon Alert

{record.title}

{record.message}

Priority: {record.priority.title()}
Time: {sent}
{f"View: {link}" if link else ""}
"""

    def _create_body(self, record: NotificationRecord) -> str:
        """Create HTML email body."""
        color = PRIORITY_COLOR.get(record.priority, "#3498DB")
        sent = record.sent_at.strftime("%Y-%m-%d %H:%M:%S") if record.sent_at else ""
        link = self._asset_url(record)
        link_html = (
            f'<div class="asset-link"><a href="{link}">View {html.escape(record.asset_symbol)} &rarr;</a></div>'
            if link
            else ""
        )

        return f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; }}
        .alert-box {{
            border-left: 4px solid {color};
            padding: 15px;
            background-color: #f9f9f9;
            margin-bottom: 20px;
        }}
        .title {{ font-size: 20px; font-weight: bold; color: {color}; }}
        .message {{ margin: 15px 0; color: #555; }}
        .meta {{ color: #888; font-size: 12px; }}
        .asset-link {{ margin-top: 15px; }}
        .asset-link a {{ color: {color}; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="alert-box">
        <div class="title">{html.escape(record.title)}</div>
        <div class="message">{html.escape(record.message)}</div>
        <div class="meta">
            Priority: {record.priority.title()}<br>
            Time: {sent}
        </div>
        {link_html}
    </div>
</body>
</html>
"""

    def _create_digest_text(self, records: list[NotificationRecord], period: str) -> str:
        lines = [f"Beacon {period} digest", ""]
        for record in records:
            sent = record.sent_at.strftime("%Y-%m-%d %H:%M") if record.sent_at else ""
            lines.append(f"- [{record.priority}] {record.title} ({sent})")
            lines.append(f"  {record.message}")
        lines.append("")
        lines.append(f"Manage alerts: {self.config.app_url}")
        return "\n".join(lines)

    def _create_digest_body(self, records: list[NotificationRecord], period: str) -> str:
        items = "\n".join(
            f"""        <li style="border-left: 4px solid {PRIORITY_COLOR.get(r.priority, '#3498DB')}; padding-left: 8px; margin-bottom: 10px;">
            <strong>{html.escape(r.title)}</strong><br>{html.escape(r.message)}
        </li>"""
            for r in records
        )
        return f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; padding: 20px;">
    <h2>Your {period} digest</h2>
    <ul style="list-style: none; padding: 0;">
{items}
    </ul>
    <p style="color: #888; font-size: 12px;"><a href="{self.config.app_url}">Manage alerts</a></p>
</body>
</html>
"""
