"""Fixed plain-text message bodies."""

TURN_SUBJECT = "PDF Workflow - Your Turn to Complete"
COMPLETED_DOCUMENT_SUBJECT = "PDF Workflow - Completed Document"
AUDIT_DOCUMENT_SUBJECT = "PDF Workflow - Audit Trail"

_SIGNATURE = "Best regards,\nSignFlow PDF Workflow System"


def _greeting(name: str | None) -> str:
    return f"Hi {name or 'there'},"


def turn_email_body(name: str | None, url: str) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "You've been added to a PDF workflow for completion.\n\n"
        "Please complete your portion of the PDF workflow.\n\n"
        f"Access your workflow: {url}\n\n"
        f"{_SIGNATURE}"
    )


def turn_sms_body(name: str | None, url: str) -> str:
    return (
        f"Hi {name or 'there'}! Please complete your portion of the PDF workflow: {url}\n"
        "This is an automated message from SignFlow."
    )


def completed_document_body(name: str | None, url: str) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "All recipients have completed the PDF workflow.\n\n"
        f"Download the completed document: {url}\n\n"
        f"{_SIGNATURE}"
    )


def audit_document_body(name: str | None, url: str) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "The audit trail for your completed PDF workflow is ready.\n\n"
        f"Download the audit document: {url}\n\n"
        f"{_SIGNATURE}"
    )
