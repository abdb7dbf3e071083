"""
Email templates for LifeDrop.

All templates use inline CSS for maximum email client compatibility.
Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from datetime import date
from html import escape

APP_NAME = "LifeDrop"

# Color constants
BG_PAGE = "#F6F7F9"
BG_CARD = "#FFFFFF"
BG_SURFACE = "#FDF2F2"
RED = "#C62828"
TEXT_PRIMARY = "#1F2328"
TEXT_SECONDARY = "#57606A"
BORDER = "#E1E4E8"

_SIGNATURE = f"-- The {APP_NAME} Team"


def _base_layout(content: str) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 32px;">
                            <span style="font-size: 28px; color: {RED};">&#x1FA78;</span>
                            <span style="font-size: 22px; font-weight: 700; color: {TEXT_PRIMARY}; margin-left: 8px;">{APP_NAME}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 40px 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 32px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                This email was sent by {APP_NAME}.<br>
                                If you didn't expect this email, you can safely ignore it.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    """Render a red CTA button."""
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 28px auto;">
    <tr>
        <td align="center" style="background-color: {RED}; border-radius: 8px;">
            <a href="{url}" target="_blank" style="display: inline-block; padding: 14px 32px; color: #FFFFFF; font-size: 16px; font-weight: 600; text-decoration: none; border-radius: 8px;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def _heading(text: str) -> str:
    return f'<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">{text}</h1>'


def _paragraph(text: str) -> str:
    return f'<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">{text}</p>'


def _details(rows: list[tuple[str, str]]) -> str:
    """Render a small label/value box."""
    lines = "".join(
        f'<p style="color: {TEXT_SECONDARY}; font-size: 14px; margin: 0 0 6px 0;">'
        f'<strong style="color: {TEXT_PRIMARY};">{escape(label)}:</strong> {escape(value)}</p>'
        for label, value in rows
    )
    return (
        f'<div style="background-color: {BG_SURFACE}; border: 1px solid {BORDER}; '
        f'border-radius: 8px; padding: 16px; margin: 24px 0;">{lines}</div>'
    )


def _fallback_link(url: str) -> str:
    return f"""\
<hr style="border: none; border-top: 1px solid {BORDER}; margin: 24px 0;">
<p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
    If the button doesn't work, copy and paste this URL:<br>
    <a href="{url}" style="color: {RED}; word-break: break-all;">{url}</a>
</p>"""


def _needed_text(date_needed: date | None) -> str:
    return date_needed.strftime("%b %d, %Y") if date_needed else "As soon as possible"


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


def verify_email(name: str, verify_url: str) -> tuple[str, str, str]:
    """
    Verification email sent after registration (and on resend).

    Returns:
        (subject, html_body, text_body)
    """
    subject = f"Verify your {APP_NAME} account"
    content = (
        _heading(f"Welcome to {APP_NAME}!")
        + _paragraph(f"Hi {escape(name)},")
        + _paragraph("Please verify your email address so we can match you with people who need blood in your city.")
        + _button(verify_url, "Verify Email Address")
        + _fallback_link(verify_url)
    )
    text_body = (
        f"Hi {name},\n\n"
        f"Welcome to {APP_NAME}! Please verify your email address by visiting this link:\n\n"
        f"{verify_url}\n\n"
        f"If you did not create an account, please ignore this email.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def password_reset(reset_url: str, expires_minutes: int = 15) -> tuple[str, str, str]:
    """
    Password reset email.

    Returns:
        (subject, html_body, text_body)
    """
    subject = "Reset your password"
    content = (
        _heading("Reset your password")
        + _paragraph(f"We received a request to reset your {APP_NAME} password. Click the button below to choose a new one.")
        + _button(reset_url, "Reset Password")
        + _paragraph(
            f"This link expires in <strong style=\"color: {TEXT_PRIMARY};\">{expires_minutes} minutes</strong>. "
            "If you didn't request this, your password will remain unchanged."
        )
        + _fallback_link(reset_url)
    )
    text_body = (
        f"Reset your password\n\n"
        f"Click this link to set a new password:\n\n{reset_url}\n\n"
        f"This link expires in {expires_minutes} minutes.\n\n"
        f"If you didn't request a password reset, please ignore this email.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------


def donation_request(
    donor_name: str,
    blood_type: str,
    city: str,
    reason: str | None,
    date_needed: date | None,
    dashboard_url: str,
) -> tuple[str, str, str]:
    """Sent to every eligible donor matched to a new request."""
    subject = f"Urgent: {blood_type} blood needed in {city}"
    rows = [
        ("Blood type", blood_type),
        ("City", city),
        ("Needed", _needed_text(date_needed)),
        ("Reason", reason or "Urgent medical need"),
    ]
    content = (
        _heading(f"{escape(blood_type)} blood needed in {escape(city)}")
        + _paragraph(f"Hi {escape(donor_name)},")
        + _paragraph("Someone near you needs your blood type, and you are currently eligible to donate.")
        + _details(rows)
        + _button(dashboard_url, "View Request")
    )
    text_body = (
        f"Hi {donor_name},\n\n"
        f"Someone in {city} needs {blood_type} blood.\n"
        f"Needed: {_needed_text(date_needed)}\n"
        f"Reason: {reason or 'Urgent medical need'}\n\n"
        f"Open your dashboard to accept: {dashboard_url}\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def request_accepted(
    recipient_name: str,
    donor_name: str,
    donor_phone: str,
    blood_type: str,
) -> tuple[str, str, str]:
    """Sent to the recipient when a donor accepts their request."""
    subject = "A donor has accepted your blood request"
    rows = [("Donor", donor_name), ("Phone", donor_phone), ("Blood type", blood_type)]
    content = (
        _heading("Good news!")
        + _paragraph(f"Hi {escape(recipient_name)},")
        + _paragraph(f"{escape(donor_name)} has accepted your request. Please contact them to arrange the donation.")
        + _details(rows)
    )
    text_body = (
        f"Hi {recipient_name},\n\n"
        f"{donor_name} has accepted your {blood_type} blood request.\n"
        f"Contact them at {donor_phone} to arrange the donation.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def acceptance_withdrawn(recipient_name: str, donor_name: str, blood_type: str) -> tuple[str, str, str]:
    """Sent to the recipient when the accepted donor withdraws."""
    subject = "A donor has withdrawn from your blood request"
    content = (
        _heading("Your request is open again")
        + _paragraph(f"Hi {escape(recipient_name)},")
        + _paragraph(
            f"{escape(donor_name)} can no longer donate. Your {escape(blood_type)} request is active "
            "again and visible to other donors."
        )
    )
    text_body = (
        f"Hi {recipient_name},\n\n"
        f"{donor_name} can no longer donate. Your {blood_type} request is active again "
        f"and visible to other donors.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def donor_released(donor_name: str, blood_type: str, city: str) -> tuple[str, str, str]:
    """Sent to a donor whose acceptance was cancelled by the recipient."""
    subject = "Your donation is no longer needed for this request"
    content = (
        _heading("Thank you for offering to help")
        + _paragraph(f"Hi {escape(donor_name)},")
        + _paragraph(
            f"The recipient of the {escape(blood_type)} request in {escape(city)} has cancelled your "
            "acceptance. You don't need to do anything else."
        )
    )
    text_body = (
        f"Hi {donor_name},\n\n"
        f"The recipient of the {blood_type} request in {city} has cancelled your acceptance. "
        f"You don't need to do anything else.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def donation_thanks(donor_name: str, recipient_name: str, next_eligible: date | None) -> tuple[str, str, str]:
    """Sent to the donor once the recipient confirms the donation."""
    subject = "Thank you for saving a life"
    next_text = next_eligible.strftime("%b %d, %Y") if next_eligible else "soon"
    content = (
        _heading("Thank you!")
        + _paragraph(f"Hi {escape(donor_name)},")
        + _paragraph(f"{escape(recipient_name)} confirmed your donation. It has been added to your history.")
        + _details([("Next eligible to donate", next_text)])
    )
    text_body = (
        f"Hi {donor_name},\n\n"
        f"{recipient_name} confirmed your donation. It has been added to your history.\n"
        f"You can donate again from {next_text}.\n\n"
        f"{_SIGNATURE}"
    )
    return subject, _base_layout(content), text_body
