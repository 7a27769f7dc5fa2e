# =============================================================================
# Folder Models
# =============================================================================
# A mailbox folder as seen by the folder tree.
#
# The server hands us a FLAT listing (one FolderEntry per mailbox). The tree
# builder in kestrel_mail.folders turns that into a forest of FolderNode
# objects. The folder path is the node's identity within an account.
#
# IMAP allows arbitrary hierarchies ("Work/Projects/Alpha"), and servers use
# different delimiters ("/" or "."), so we always keep the delimiter around.
# =============================================================================

from dataclasses import dataclass, field
from enum import Enum, auto


class FolderRole(Enum):
    """
    Semantic role of a folder.

    Derived from the RFC 6154 SPECIAL-USE attribute when the server reports
    one, otherwise inferred from well-known folder names.
    """
    INBOX = auto()
    SENT = auto()
    DRAFTS = auto()
    TRASH = auto()
    JUNK = auto()
    ARCHIVE = auto()
    OTHER = auto()

    @classmethod
    def detect(cls, path: str, special_use: str | None = None) -> "FolderRole":
        """
        Work out the role of a folder.

        Args:
            path: Full folder path.
            special_use: SPECIAL-USE flag, e.g. "\\Sent".

        Returns:
            The detected FolderRole, or OTHER if unrecognized.
        """
        if special_use:
            role = _SPECIAL_USE_ROLES.get(special_use.lower())
            if role is not None:
                return role

        # Different providers use different conventions...
        name_lower = path.lower()
        if name_lower == "inbox":
            return cls.INBOX
        elif name_lower in ("sent", "sent mail", "sent items", "[gmail]/sent mail"):
            return cls.SENT
        elif name_lower in ("drafts", "draft", "[gmail]/drafts"):
            return cls.DRAFTS
        elif name_lower in ("trash", "deleted", "deleted items", "[gmail]/trash"):
            return cls.TRASH
        elif name_lower in ("junk", "spam", "junk mail", "[gmail]/spam"):
            return cls.JUNK
        elif name_lower in ("archive", "all mail", "[gmail]/all mail"):
            return cls.ARCHIVE

        return cls.OTHER


_SPECIAL_USE_ROLES = {
    "\\inbox": FolderRole.INBOX,
    "\\sent": FolderRole.SENT,
    "\\drafts": FolderRole.DRAFTS,
    "\\trash": FolderRole.TRASH,
    "\\junk": FolderRole.JUNK,
    "\\archive": FolderRole.ARCHIVE,
    "\\all": FolderRole.ARCHIVE,
}

# RFC 6154 attributes we report as special use, in priority order
SPECIAL_USE_FLAGS = ("\\Sent", "\\Drafts", "\\Trash", "\\Junk", "\\Archive", "\\All", "\\Flagged")


@dataclass
class FolderEntry:
    """
    One row of the server's flat folder listing, with its STATUS counts.

    Attributes:
        path: Full folder path (the server-side mailbox name).
        name: Last path segment.
        delimiter: Hierarchy delimiter, or "" for flat servers.
        parent_path: Path of the parent folder, None for top-level folders.
        flags: LIST attributes (\\HasChildren, \\Noselect, ...).
        special_use: SPECIAL-USE attribute if any.
        messages: STATUS MESSAGES count (None if the status query failed).
        unseen: STATUS UNSEEN count (None if the status query failed).
    """
    path: str
    name: str
    delimiter: str = "/"
    parent_path: str | None = None
    flags: list[str] = field(default_factory=list)
    special_use: str | None = None
    messages: int | None = None
    unseen: int | None = None

    @property
    def selectable(self) -> bool:
        """False for \\Noselect / \\NonExistent containers."""
        lowered = {f.lower() for f in self.flags}
        return "\\noselect" not in lowered and "\\nonexistent" not in lowered


@dataclass
class FolderNode:
    """
    A folder in the cached folder tree.

    Attributes:
        path: Full folder path, unique within an account.
        display_name: Name shown in the tree.
        delimiter: Hierarchy delimiter.
        special_use: SPECIAL-USE attribute if any.
        total_messages: Message count reported by STATUS.
        unseen_messages: Unseen count reported by STATUS.
        parent_path: Parent path as reported by the listing.
        selectable: False for \\Noselect containers (they cannot be opened).
        children: Child folders, or None for leaves.
    """
    path: str
    display_name: str
    delimiter: str = "/"
    special_use: str | None = None
    total_messages: int | None = None
    unseen_messages: int | None = None
    parent_path: str | None = None
    selectable: bool = True
    children: list["FolderNode"] | None = None

    @property
    def role(self) -> FolderRole:
        return FolderRole.detect(self.path, self.special_use)

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def add_child(self, child: "FolderNode") -> None:
        if self.children is None:
            self.children = []
        self.children.append(child)

    def __str__(self) -> str:
        unread = f" ({self.unseen_messages})" if self.unseen_messages else ""
        return f"{self.display_name}{unread}"

    def __repr__(self) -> str:
        return (
            f"FolderNode(path={self.path!r}, role={self.role.name}, "
            f"messages={self.total_messages}, unseen={self.unseen_messages})"
        )
