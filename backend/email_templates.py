import os
from typing import Dict, List, Tuple

EVENT_NAME = os.environ.get("EVENT_NAME", "Loop Hackathon")

_FOOTER = f"""
          <hr style="border: none; border-top: 1px solid #e6e6e6; margin: 24px 0;" />
          <p style="margin-bottom: 0; color: #666; font-size: 12px; text-align: center;">&copy; {EVENT_NAME}. All rights reserved.</p>"""


def _wrap(heading: str, body: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1b1f24;">
        <div style="max-width: 600px; margin: 0 auto; padding: 24px; border: 1px solid #e6e6e6; border-radius: 12px;">
          <h1 style="margin-top: 0; text-align: center;">{heading}</h1>
{body}{_FOOTER}
        </div>
      </body>
    </html>
    """


def build_verification_reminder_email() -> Tuple[str, str]:
    subject = f"Action Required: Verify Your Team for {EVENT_NAME}"
    body = f"""          <h2>Hi {{{{name}}}},</h2>
          <p>Your team <strong>{{{{teamName}}}}</strong> is registered for <strong>{EVENT_NAME}</strong> but the registration is still pending verification.</p>
          <p><strong>Action required:</strong></p>
          <ul>
            <li>Complete your team profile on Unstop</li>
            <li>Make sure every member has finished their registration</li>
            <li>Reach out to the organisers if anything is blocking you</li>
          </ul>
          <p>Unverified teams may lose their spot, so please finish this soon.</p>
          <p>Best regards,<br><strong>{EVENT_NAME} Team</strong></p>"""
    return subject, _wrap(EVENT_NAME, body)


def build_welcome_email() -> Tuple[str, str]:
    subject = f"Welcome to {EVENT_NAME}!"
    body = f"""          <h2>Welcome, {{{{name}}}}!</h2>
          <p>Congratulations! Your team <strong>{{{{teamName}}}}</strong> has been registered for {EVENT_NAME}.</p>
          <p>Stay tuned for updates and important announcements.</p>
          <p>Best of luck!<br><strong>{EVENT_NAME} Team</strong></p>"""
    return subject, _wrap(EVENT_NAME, body)


def build_deadline_reminder_email() -> Tuple[str, str]:
    subject = f"Deadline Approaching - {EVENT_NAME}"
    body = f"""          <h2>Hi {{{{name}}}},</h2>
          <p style="background: #fff3cd; border: 1px solid #ffc107; padding: 15px; border-radius: 6px;"><strong>Important:</strong> the submission deadline is approaching!</p>
          <p>Make sure your team <strong>{{{{teamName}}}}</strong> submits before the deadline.</p>
          <p>Best of luck!<br><strong>{EVENT_NAME} Team</strong></p>"""
    return subject, _wrap("Deadline Reminder", body)


def build_custom_email() -> Tuple[str, str]:
    subject = f"{EVENT_NAME} Update"
    body = f"""          <h2>Hi {{{{name}}}},</h2>
          <p>Write your custom message here...</p>
          <p>Best regards,<br><strong>{EVENT_NAME} Team</strong></p>"""
    return subject, _wrap(EVENT_NAME, body)


TEMPLATE_BUILDERS = [
    ("verification_reminder", "Verification Reminder", build_verification_reminder_email),
    ("welcome", "Welcome Email", build_welcome_email),
    ("deadline_reminder", "Deadline Reminder", build_deadline_reminder_email),
    ("custom", "Custom Email", build_custom_email),
]


def list_email_templates() -> List[Dict[str, str]]:
    templates = []
    for template_id, name, builder in TEMPLATE_BUILDERS:
        subject, content = builder()
        templates.append({"id": template_id, "name": name, "subject": subject, "content": content})
    return templates
