# =============================================================================
# SMTP Module
# =============================================================================
# Sending mail via SMTP:
#   - Connection with implicit TLS or opportunistic STARTTLS
#   - MIME message building (text, HTML, attachments)
#   - Threading headers for replies
# =============================================================================

from kestrel_mail.smtp.client import (
    EmailDraft,
    SendError,
    SMTPAuthenticationError,
    SMTPClient,
    SMTPConnectionError,
    SMTPError,
    build_message,
)

__all__ = [
    "SMTPClient",
    "EmailDraft",
    "build_message",
    "SMTPError",
    "SMTPConnectionError",
    "SMTPAuthenticationError",
    "SendError",
]
