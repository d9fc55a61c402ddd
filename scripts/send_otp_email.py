"""
Send a sample OTP email to check that the mail provider is configured correctly.
Usage: python scripts/send_otp_email.py <to_email>
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from teletabib.config import get_settings
from teletabib.services.notifications import send_otp_email
from teletabib.services.registration import generate_otp


def main():
    to_email = (sys.argv[1] if len(sys.argv) > 1 else "").strip()
    if not to_email:
        print("Usage: python scripts/send_otp_email.py <to_email>")
        sys.exit(1)

    settings = get_settings()
    if settings.mailgun_api_key and settings.mailgun_domain:
        print(f"Provider: Mailgun ({settings.mailgun_domain}, {settings.mailgun_base_url})")
    elif settings.sendgrid_api_key:
        print(f"Provider: SendGrid (from {settings.sendgrid_from_email})")
    else:
        print("No mail provider configured. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env")
        sys.exit(1)

    code = generate_otp(settings.otp_length)
    print(f"Sending sample code {code} to: {to_email}")
    if send_otp_email(to_email, code, name="TeleTabib tester"):
        print("Success: check the inbox (and spam) for", to_email)
    else:
        print("Failed: the provider rejected the message.")
        print("  - Use the Private API key from Mailgun (Sending -> Domain -> API Keys), not the domain name.")
        print("  - For EU accounts set MAILGUN_BASE_URL=https://api.eu.mailgun.net in .env")
        sys.exit(1)


if __name__ == "__main__":
    main()
