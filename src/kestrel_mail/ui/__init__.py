# =============================================================================
# UI Module
# =============================================================================
# Textual host for Kestrel Mail.
#
# Structure:
#   - surfaces:    TabSurface / TextualPanelHost (where panels render)
#   - folder_tree: FolderTree fed by the MailExplorer
#   - compose:     ComposeScreen
#   - dialogs:     confirm/prompt/account modals and the TextualNotifier
#
# Nothing outside this package and app.py imports Textual.
# =============================================================================

from kestrel_mail.ui.compose import ComposeScreen
from kestrel_mail.ui.dialogs import (
    AccountScreen,
    ConfirmScreen,
    PromptScreen,
    TextualNotifier,
    ask,
)
from kestrel_mail.ui.folder_tree import FolderTree
from kestrel_mail.ui.surfaces import TabSurface, TextualPanelHost

__all__ = [
    "AccountScreen",
    "ComposeScreen",
    "ConfirmScreen",
    "PromptScreen",
    "TextualNotifier",
    "FolderTree",
    "TabSurface",
    "TextualPanelHost",
    "ask",
]
