import logging
from typing import List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email utility for the portal.
    Sends invoice notifications and other transactional emails via SendGrid.
    """

    def __init__(self, api_key: Optional[str] = None, sender_email: Optional[str] = None):
        self.sendgrid_api_key = api_key or settings.SENDGRID_API_KEY
        self.sender_email = sender_email or settings.MAIL_FROM

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    # ============================================================
    # ✅ Send Invoice Email (synchronous; call through the threadpool)
    # ============================================================
    def send_invoice_email(
        self,
        to_emails: List[str],
        invoice_number: str,
        org_name: str,
        total: float,
        currency: str,
        invoice_link: str,
        due_date: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {', '.join(to_emails)}")
            logger.info(f"Invoice: {invoice_number} | Organization: {org_name} | Link: {invoice_link}")
            return True

        subject = f"Invoice {invoice_number} from Ownly Studio"
        amount = f"{total:,.2f} {currency.upper()}"
        due_line = f"<p>Due date: <strong>{due_date}</strong></p>" if due_date else ""
        note = f"<p>{message}</p>" if message else ""

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Hello {org_name},</h2>
            <p>Your invoice <strong>{invoice_number}</strong> for <strong>{amount}</strong> is ready.</p>
            {due_line}
            {note}
            <p style="text-align: center; margin: 20px 0;">
                <a href="{invoice_link}" style="
                    background-color: #111827;
                    color: white;
                    padding: 12px 28px;
                    text-decoration: none;
                    border-radius: 6px;
                    font-weight: bold;
                    display: inline-block;
                ">View invoice</a>
            </p>
            <p>If the button doesn’t work, copy and paste this link into your browser:</p>
            <p style="word-break: break-all; color: #555;">{invoice_link}</p>
            <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
            <p>Thank you,<br><strong>Ownly Studio</strong></p>
        </div>
        """

        try:
            mail = Mail(
                from_email=self.sender_email,
                to_emails=to_emails,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(mail)
            logger.info(f"✅ Invoice {invoice_number} emailed to {to_emails}. Status: {response.status_code}")
            return True
        except Exception as e:
            logger.exception("❌ Failed to send invoice %s to %s: %s", invoice_number, to_emails, e)
            return False


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService()


def get_email_service() -> EmailService:
    return email_service
