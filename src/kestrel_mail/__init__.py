# =============================================================================
# Kestrel Mail: an IMAP/SMTP Mail Client for the Terminal
# =============================================================================
#
# Kestrel Mail keeps one live IMAP connection per account and shows
# folders and messages in a Textual interface.
#
# Features:
#   - Folder tree with unread counts, connecting accounts on demand
#   - Paged, newest-first message lists
#   - Message panels in window, preview or split mode
#   - Reply, Reply All, Forward, with the sent copy filed over IMAP
#   - Passwords in the system keyring, config in XDG locations
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "kestrel-mail"

# Main entry point - this is what gets called by the 'kestrel-mail' command
from kestrel_mail.app import main

__all__ = ["main", "__version__", "__app_name__"]
