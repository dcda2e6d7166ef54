"""Email and SMS bodies for auth flows."""

from dataclasses import dataclass
from html import escape

from auth.types import LinkPurpose

PURPOSE_TEXT = {
    LinkPurpose.REGISTRATION: "Complete Registration",
    LinkPurpose.LOGIN: "Login",
    LinkPurpose.INVITATION: "Accept Invitation",
}

FOOTER = """
    <hr>
    <p style="color: #666; font-size: 12px;">
      {app_name} - Agricultural Supply Chain Management Platform
    </p>
  </div>"""


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    body: str


def _expiry_text(minutes: int) -> str:
    if minutes % (24 * 60) == 0:
        days = minutes // (24 * 60)
        return f"{days} day{'s' if days != 1 else ''}"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minutes"


def magic_link_email(
    app_name: str,
    recipient_name: str | None,
    link_url: str,
    purpose: LinkPurpose,
    expires_in_minutes: int,
) -> EmailMessage:
    purpose_text = PURPOSE_TEXT[purpose]
    body = f"""
  <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Welcome to {escape(app_name)}</h2>
    <p>Hello {escape(recipient_name or "User")},</p>
    <p>Click the link below to {purpose_text.lower()} to your {escape(app_name)} account:</p>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{escape(link_url)}"
         style="background-color: #4CAF50; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px; display: inline-block;">
        {purpose_text} to {escape(app_name)}
      </a>
    </div>
    <p><strong>This link will expire in {_expiry_text(expires_in_minutes)} for security reasons.</strong></p>
    <p>If you didn't request this, please ignore this email.</p>""" + FOOTER.format(
        app_name=escape(app_name)
    )
    return EmailMessage(subject=f"Your {app_name} {purpose_text} Link", body=body)


def invitation_email(
    app_name: str,
    inviter_name: str,
    role: str,
    link_url: str,
    expires_in_minutes: int,
) -> EmailMessage:
    role_text = role.replace("_", " ")
    body = f"""
  <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>You're Invited to {escape(app_name)}!</h2>
    <p>Hello,</p>
    <p>{escape(inviter_name)} has invited you to join {escape(app_name)} as a {escape(role_text)}.</p>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{escape(link_url)}"
         style="background-color: #4CAF50; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px; display: inline-block;">
        Accept Invitation
      </a>
    </div>
    <p><strong>This invitation will expire in {_expiry_text(expires_in_minutes)}.</strong></p>
    <p>If you don't want to join {escape(app_name)}, you can safely ignore this email.</p>""" + FOOTER.format(
        app_name=escape(app_name)
    )
    return EmailMessage(subject=f"Invitation to join {app_name} as {role_text}", body=body)


def otp_email(
    app_name: str,
    recipient_name: str | None,
    code: str,
    expires_in_minutes: int,
) -> EmailMessage:
    body = f"""
  <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>{escape(app_name)} Verification Code</h2>
    <p>Hello {escape(recipient_name or "User")},</p>
    <p>Your verification code is:</p>
    <div style="text-align: center; margin: 30px 0;">
      <div style="background-color: #f5f5f5; padding: 20px; border-radius: 5px; font-size: 24px; font-weight: bold; letter-spacing: 5px;">
        {code}
      </div>
    </div>
    <p><strong>This code will expire in {_expiry_text(expires_in_minutes)}.</strong></p>
    <p>If you didn't request this code, please ignore this email.</p>""" + FOOTER.format(
        app_name=escape(app_name)
    )
    return EmailMessage(subject=f"Your {app_name} Verification Code", body=body)


def otp_sms(app_name: str, code: str, expires_in_minutes: int) -> str:
    return (
        f"Your {app_name} verification code is: {code}. "
        f"This code will expire in {_expiry_text(expires_in_minutes)}."
    )
