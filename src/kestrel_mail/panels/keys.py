# =============================================================================
# Panel Keys
# =============================================================================
# Identity of a panel in the PanelRegistry:
#
#   list panel:    (account_id, folder_path)
#   detail panel:  (account_id, folder_path, uid)
#
# The registry holds at most one live panel per key.
#
# MessageRef / FolderRef are the argument records commands take.
# =============================================================================

from dataclasses import dataclass


@dataclass(frozen=True)
class MessageRef:
    account_id: str
    folder_path: str
    uid: int


@dataclass(frozen=True)
class FolderRef:
    account_id: str
    folder_path: str | None = None
    title: str = ""


@dataclass(frozen=True)
class PanelKey:
    account_id: str
    folder_path: str
    uid: int | None = None

    @classmethod
    def for_list(cls, account_id: str, folder_path: str) -> "PanelKey":
        return cls(account_id, folder_path)

    @classmethod
    def for_detail(cls, account_id: str, folder_path: str, uid: int) -> "PanelKey":
        return cls(account_id, folder_path, uid)

    @property
    def is_detail(self) -> bool:
        return self.uid is not None

    @property
    def list_key(self) -> "PanelKey":
        """The key of the folder listing this key belongs to."""
        return PanelKey(self.account_id, self.folder_path)

    def __str__(self) -> str:
        base = f"{self.account_id}:{self.folder_path}"
        return f"{base}#{self.uid}" if self.uid is not None else base
