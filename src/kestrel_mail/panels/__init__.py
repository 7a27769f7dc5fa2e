# =============================================================================
# Panels Module
# =============================================================================
# Message list and message detail panels and the registry that keeps one
# live panel per key. Panels render into PanelSurface objects supplied by a
# PanelHost (the Textual layer in the app, a fake in tests).
# =============================================================================

from kestrel_mail.panels.keys import FolderRef, MessageRef, PanelKey
from kestrel_mail.panels.message_detail import MessageDetailPanel
from kestrel_mail.panels.message_list import MessageListPanel
from kestrel_mail.panels.registry import PanelRegistry
from kestrel_mail.panels.surface import PanelHost, PanelState, PanelSurface

__all__ = [
    "PanelKey",
    "MessageRef",
    "FolderRef",
    "PanelHost",
    "PanelSurface",
    "PanelState",
    "MessageListPanel",
    "MessageDetailPanel",
    "PanelRegistry",
]
