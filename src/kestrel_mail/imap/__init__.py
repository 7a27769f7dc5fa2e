# =============================================================================
# IMAP Module
# =============================================================================
# Everything that talks to the IMAP server:
#   - client:  aioimaplib adapter behind the MailProtocol interface
#   - parser:  IMAP response parsing (FETCH, LIST, STATUS, ENVELOPE)
#   - mime:    raw message bytes -> MessageDetail
#   - listing: sequence-range pagination and page ordering
#   - session: one MailSession per account, with the folder lock
# =============================================================================

from kestrel_mail.imap.client import ImapProtocolClient, MailProtocol
from kestrel_mail.imap.listing import order_page, sequence_range
from kestrel_mail.imap.parser import FetchRecord
from kestrel_mail.imap.session import ConnectionState, MailSession

__all__ = [
    # Client
    "ImapProtocolClient",
    "MailProtocol",
    "FetchRecord",
    # Listing
    "sequence_range",
    "order_page",
    # Session
    "MailSession",
    "ConnectionState",
]
