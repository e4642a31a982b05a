# services/api/core/email_sender.py
from __future__ import annotations
import aiosmtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
import logging

logger = logging.getLogger(__name__)


async def send_email(
    *,
    to_email: str,
    subject: str,
    body_html: str,
    smtp_host: str,
    smtp_port: int,
    smtp_user: str,
    smtp_password: str,
    from_email: str,
    from_name: str,
) -> bool:
    """
    Send an HTML email over SMTP with STARTTLS.
    Returns True on success, False on failure.
    """
    try:
        msg = MIMEMultipart()
        msg['From'] = f"{from_name} <{from_email}>"
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.attach(MIMEText(body_html, 'html'))

        await aiosmtplib.send(
            msg,
            hostname=smtp_host,
            port=smtp_port,
            username=smtp_user,
            password=smtp_password,
            start_tls=True,
            recipients=[to_email],
        )

        logger.info(f"✓ Email sent to {to_email}")
        return True

    except Exception as e:
        logger.error(f"✗ Email send failed to {to_email}: {e}")
        return False


def render_approval_email(project_name: str, approval_url: str, pin: str, ttl_hours: int = 24) -> str:
    """HTML body carrying the PIN in clear and the token-bearing approval link."""
    name = escape(project_name)
    url = escape(approval_url, quote=True)
    return f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Project Approval Request</h2>
            <p>You have been requested to review and approve the project <strong>{name}</strong>.</p>

            <div style="background: #f4f4f5; padding: 20px; border-radius: 8px; text-align: center; margin: 20px 0;">
                <p style="margin-bottom: 10px; color: #555;">Your Approval PIN:</p>
                <h1 style="margin: 0; letter-spacing: 5px; font-size: 32px;">{escape(pin)}</h1>
            </div>

            <p>Click the link below and enter the PIN above to finalize approval:</p>
            <p>
                <a href="{url}" style="background: #000; color: #fff; padding: 12px 24px; text-decoration: none; border-radius: 4px; display: inline-block;">
                    Go to Approval Page
                </a>
            </p>
            <p style="font-size: 12px; color: #666; margin-top: 30px;">
                The PIN expires in {ttl_hours} hours. If you didn't expect this, please ignore this email.
            </p>
        </div>
    """


async def send_approval_email(settings, to_email: str, project_name: str, approval_url: str, pin: str) -> bool:
    return await send_email(
        to_email=to_email,
        subject=f"Approve Project: {project_name}",
        body_html=render_approval_email(project_name, approval_url, pin, settings.approval_token_ttl_hours),
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        smtp_password=settings.smtp_password,
        from_email=settings.smtp_from_email,
        from_name=settings.smtp_from_name,
    )
