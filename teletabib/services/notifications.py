"""Notification service: OTP and welcome emails via Mailgun (preferred) or SendGrid."""
import logging

import httpx

from teletabib.config import get_settings

logger = logging.getLogger(__name__)

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"
EMAIL_TIMEOUT_SECONDS = 10.0


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun (preferred) or SendGrid. Returns True if the provider accepted it.

    Outside production, with no provider configured, the message is only logged
    (at DEBUG) and treated as delivered so local signups can be completed.
    """
    settings = get_settings()
    if settings.mailgun_api_key and settings.mailgun_domain:
        return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)
    if settings.sendgrid_api_key:
        return _send_email_sendgrid(to_email, subject, html_content, text_content=text_content, settings=settings)
    if not settings.is_production:
        logger.warning("[Email] No mail provider configured; console delivery to=%s subject=%s", to_email, subject)
        logger.debug("[Email] body for %s: %s", to_email, text_content or html_content)
        return True
    logger.error(
        "[Email] NOT SENT: to=%s subject=%s. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY).",
        to_email,
        subject,
    )
    return False


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = (settings.mailgun_domain or "").strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if domain and from_domain != domain:
        from_addr = f"noreply@{domain}"
        logger.info("[Mailgun] Using from=%s (must match domain %s for delivery)", from_addr, domain)
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=EMAIL_TIMEOUT_SECONDS) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                logger.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                logger.warning("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(
                    f"{MAILGUN_EU_BASE}/v3/{domain}/messages",
                    auth=("api", settings.mailgun_api_key),
                    data=data,
                )
                if 200 <= r2.status_code < 300:
                    logger.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                logger.error("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            logger.error("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        logger.error("[Mailgun] %s sending to=%s: %s", type(e).__name__, to_email, e)
        return False


def _send_email_sendgrid(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail

    message = Mail(
        from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
        plain_text_content=text_content or "",
    )
    try:
        SendGridAPIClient(settings.sendgrid_api_key).send(message)
    except Exception as e:  # the SendGrid client raises its own python_http_client errors
        logger.error("[SendGrid] %s sending to=%s: %s", type(e).__name__, to_email, e)
        return False
    return True


def send_otp_email(to_email: str, code: str, name: str | None = None) -> bool:
    """Send the registration one-time code. Returns False if it could not be handed to a provider."""
    expire_minutes = get_settings().otp_expire_minutes
    greeting = (name or "").strip() or "there"
    subject = "Your OTP Code - TeleTabib"
    text_content = (
        f"Hello {greeting}, your TeleTabib verification code is: {code}. "
        f"It is valid for {expire_minutes} minutes. Please do not share it with anyone."
    )
    html_content = f"""
    <p>Hello {greeting},</p>
    <p>Your One-Time Password (OTP) for verification is:
    <strong style="font-size:1.4em;letter-spacing:0.2em;">{code}</strong></p>
    <p>This OTP is valid for {expire_minutes} minutes. Please do not share it with anyone.</p>
    <p>If you didn't request this OTP, please ignore this email.</p>
    <p>- TeleTabib</p>
    """
    logger.info("[Verification] Sending code to %s code_len=%d", to_email, len(code or ""))
    return send_email(to_email, subject, html_content, text_content=text_content)


def send_welcome_email(to_email: str, name: str | None = None) -> bool:
    """Welcome email once the account exists (after OTP verification)."""
    greeting = (name or "").strip() or "there"
    subject = "Welcome to TeleTabib"
    text = f"Hi {greeting}, welcome to TeleTabib. You can now book appointments with doctors through our platform."
    html = f"""
    <p>Hi {greeting},</p>
    <p>Welcome to <strong>TeleTabib</strong>. We're excited to have you on board.</p>
    <p>You can now book appointments with doctors easily through our platform.</p>
    <p>- TeleTabib</p>
    """
    return send_email(to_email, subject, html, text_content=text)
