# =============================================================================
# Account Model
# =============================================================================
# Represents a configured mail account: connection parameters for the
# incoming (IMAP) and outgoing (SMTP) servers plus folder-role mappings.
#
# IMPORTANT: Passwords are NOT stored here. They live in the system keyring
# and are looked up through the AccountStore at runtime.
#
# The account's `id` is the key used everywhere else in the application:
# sessions, folder caches and panel keys are all indexed by it.
# =============================================================================

from dataclasses import dataclass, field


@dataclass
class Account:
    """
    A mail account with IMAP and SMTP configuration.

    Attributes:
        id: Unique identifier, e.g. "account-1718040000-k3j9x2a".
        name: Display name shown at the root of the folder tree.

        host: IMAP server hostname.
        port: IMAP server port (993 for implicit TLS, 143 for plain).
        secure: Connect with TLS from the start.
        username: IMAP login, usually the email address.

        smtp_host: SMTP server hostname.
        smtp_port: SMTP server port (465 for implicit TLS, 587 for STARTTLS).
        smtp_secure: Connect to SMTP with TLS from the start.
        smtp_username: SMTP login. Empty means "same as username".

        sent_folder / drafts_folder / trash_folder / spam_folder /
        archive_folder / newsletter_folder: Folder paths for each role.
        custom_folders: Extra folder paths the user pinned.

    Example:
        >>> account = Account(
        ...     id="work",
        ...     name="Work",
        ...     host="imap.example.com",
        ...     username="me@example.com",
        ...     smtp_host="smtp.example.com",
        ... )
    """

    # Identity
    id: str
    name: str = ""

    # IMAP (incoming)
    host: str = ""
    port: int = 993
    secure: bool = True
    username: str = ""

    # SMTP (outgoing)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_username: str = ""

    # Folder roles
    sent_folder: str = "Sent"
    drafts_folder: str = "Drafts"
    trash_folder: str = "Trash"
    spam_folder: str = "Junk"
    archive_folder: str = "Archive"
    newsletter_folder: str = ""
    custom_folders: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.username or self.id

    @property
    def keyring_service(self) -> str:
        """
        Service name used for keyring password storage.

            keyring get kestrel-mail:work imap
        """
        return f"kestrel-mail:{self.id}"

    @property
    def smtp_login(self) -> str:
        """The SMTP username, falling back to the IMAP username."""
        return self.smtp_username or self.username

    @property
    def folder_roles(self) -> dict[str, str]:
        """Role name -> folder path, skipping unset roles."""
        roles = {
            "sent": self.sent_folder,
            "drafts": self.drafts_folder,
            "trash": self.trash_folder,
            "spam": self.spam_folder,
            "archive": self.archive_folder,
            "newsletters": self.newsletter_folder,
        }
        return {role: path for role, path in roles.items() if path}

    def __str__(self) -> str:
        return f"{self.name} <{self.username}>"

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, name={self.name!r}, "
            f"imap={self.host}:{self.port}, "
            f"smtp={self.smtp_host}:{self.smtp_port})"
        )
