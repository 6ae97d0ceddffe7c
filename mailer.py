"""
Outgoing email over SMTP (STARTTLS).
"""

import html
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Optional

import config

logger = logging.getLogger(__name__)

STORE_NAME = "The Page Hub"


def build_reset_password_email(name: Optional[str], reset_url: str) -> str:
    safe_name = html.escape(name or "there")
    url = html.escape(reset_url, quote=True)
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8" /><title>Reset your password - {STORE_NAME}</title></head>
<body style="margin:0; padding:24px 0; background:#0f172a; font-family:system-ui, sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" role="presentation">
    <tr><td align="center">
      <table width="100%" cellpadding="0" cellspacing="0" role="presentation"
             style="max-width:480px; background:#020617; border-radius:18px; border:1px solid #1e293b;">
        <tr><td style="padding:20px 24px; background:linear-gradient(135deg,#4f46e5,#ec4899);">
          <h1 style="margin:0; font-size:20px; color:#f9fafb;">Reset your password</h1>
          <p style="margin:4px 0 0 0; font-size:13px; color:#e5e7eb;">You recently requested to reset your password.</p>
        </td></tr>
        <tr><td style="padding:22px 24px 8px 24px;">
          <p style="margin:0 0 10px 0; font-size:14px; color:#e5e7eb;">Hi {safe_name},</p>
          <p style="margin:0 0 12px 0; font-size:13px; color:#9ca3af; line-height:1.6;">
            We received a request to reset the password for your {STORE_NAME} account.
            Click the button below to choose a new password.
          </p>
          <p style="margin:0 0 18px 0; font-size:12px; color:#f97316;">
            This link is valid for <strong>{config.RESET_TOKEN_MINUTES} minutes</strong>.
            If you didn't request this, you can safely ignore this email.
          </p>
          <a href="{url}" style="display:inline-block; padding:10px 24px; border-radius:999px;
             background:#4f46e5; color:#f9fafb; font-size:14px; font-weight:600; text-decoration:none;">Reset password</a>
          <p style="margin:18px 0 8px 0; font-size:12px; color:#6b7280;">
            If the button doesn't work, copy and paste this link into your browser:
          </p>
          <p style="margin:0 0 16px 0; font-size:11px; word-break:break-all;">
            <a href="{url}" style="color:#60a5fa; text-decoration:none;">{url}</a>
          </p>
        </td></tr>
        <tr><td style="padding:16px 24px 20px 24px; border-top:1px solid #1f2937;">
          <p style="margin:0; font-size:11px; color:#4b5563;">&copy; {datetime.now().year} {STORE_NAME}. All rights reserved.</p>
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""


def send_email(to: str, subject: str, html_body: str, text: Optional[str] = None):
    if not to:
        raise ValueError("send_email: 'to' is required")
    if not config.EMAIL_HOST:
        logger.warning("EMAIL_HOST is not set; skipping email %r to %s", subject, to)
        return

    msg = EmailMessage()
    msg["From"] = config.EMAIL_FROM or config.EMAIL_USER
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text or "Open this message in an HTML capable mail client.")
    msg.add_alternative(html_body, subtype="html")

    with smtplib.SMTP(config.EMAIL_HOST, config.EMAIL_PORT, timeout=15) as smtp:
        smtp.starttls()
        if config.EMAIL_USER:
            smtp.login(config.EMAIL_USER, config.EMAIL_PASS or "")
        smtp.send_message(msg)
    logger.info("Email %r sent to %s", subject, to)
