from html import escape
from typing import NamedTuple, Optional

FOOTER = "This is an automated message from Community Safety Platform."


class EmailContent(NamedTuple):
    subject: str
    html: str
    text: str


def _label(incident_type: str) -> str:
    return incident_type.replace("_", " ")


def _wrap(color: str, heading: str, paragraphs) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: {color};">{heading}</h2>{body}'
        '<hr style="border: none; border-top: 1px solid #eee; margin: 20px 0;">'
        f'<p style="color: #666; font-size: 12px;">{FOOTER}</p></div>'
    )


def incident_reported(name: str, incident_type: str) -> EmailContent:
    who, kind = escape(name), escape(_label(incident_type))
    return EmailContent(
        subject="Incident Report Received",
        html=_wrap("#007bff", "Thank you for your report", [
            f"Hello {who},",
            f"Your incident report for <strong>{kind}</strong> has been successfully submitted.",
            "Our moderation team will review it shortly.",
        ]),
        text=f"Hello {name},\n\nYour incident report for {_label(incident_type)} has been successfully submitted. "
             "Our team will review it shortly.",
    )


def incident_verified(name: str, incident_type: str) -> EmailContent:
    who, kind = escape(name), escape(_label(incident_type))
    return EmailContent(
        subject="Your Incident Report Has Been Verified",
        html=_wrap("#28a745", "Incident Verified!", [
            f"Hello {who},",
            f"Your incident report for <strong>{kind}</strong> has been verified by our moderation team.",
            "The incident is now visible to the community.",
        ]),
        text=f"Hello {name},\n\nYour incident report for {_label(incident_type)} has been verified "
             "and is now visible to the community.",
    )


def incident_rejected(name: str, incident_type: str, reason: Optional[str]) -> EmailContent:
    who, kind = escape(name), escape(_label(incident_type))
    paragraphs = [
        f"Hello {who},",
        f"Your incident report for <strong>{kind}</strong> has been reviewed by our moderation team.",
        "Unfortunately, the report could not be verified at this time.",
    ]
    if reason:
        paragraphs.append(f"<strong>Reason:</strong> {escape(reason)}")
    return EmailContent(
        subject="Incident Report Update",
        html=_wrap("#dc3545", "Incident Report Status Update", paragraphs),
        text=f"Hello {name},\n\nYour incident report for {_label(incident_type)} has been rejected."
             + (f" Reason: {reason}" if reason else ""),
    )


def incident_resolved(name: str, incident_type: str) -> EmailContent:
    who, kind = escape(name), escape(_label(incident_type))
    return EmailContent(
        subject="Incident Resolved",
        html=_wrap("#17a2b8", "Incident Resolved!", [
            f"Hello {who},",
            f"The incident you reported for <strong>{kind}</strong> has been resolved.",
            "Thank you for helping keep our community safe!",
        ]),
        text=f"Hello {name},\n\nThe incident you reported for {_label(incident_type)} has been resolved. Thank you!",
    )


def render(event: str, name: str, incident) -> Optional[EmailContent]:
    """Email for an `incident.*` event, or None when the event has no email."""
    incident_type = incident.type.value
    if event == "incident.reported":
        return incident_reported(name, incident_type)
    if event == "incident.verified":
        return incident_verified(name, incident_type)
    if event == "incident.rejected":
        return incident_rejected(name, incident_type, incident.rejection_reason)
    if event == "incident.resolved":
        return incident_resolved(name, incident_type)
    return None
