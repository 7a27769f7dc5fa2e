# =============================================================================
# Kestrel Mail Core Module
# =============================================================================
# Core domain models. These are plain dataclasses with no external
# dependencies, so they can be imported anywhere without causing circular
# imports:
#   - Account: a mail account (IMAP/SMTP parameters, folder roles)
#   - FolderEntry / FolderNode: flat listing rows and cached tree nodes
#   - MessageSummary / MessageDetail: listing rows and full messages
# =============================================================================

from kestrel_mail.core.account import Account
from kestrel_mail.core.folder import FolderEntry, FolderNode, FolderRole
from kestrel_mail.core.message import (
    Address,
    AttachmentInfo,
    MessageDetail,
    MessageSummary,
)

__all__ = [
    "Account",
    "FolderEntry",
    "FolderNode",
    "FolderRole",
    "Address",
    "AttachmentInfo",
    "MessageDetail",
    "MessageSummary",
]
