# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading, saving, and validating Kestrel Mail configuration.
#
# XDG Base Directory Compliance (https://specifications.freedesktop.org/basedir-spec/):
#   - Config:  $XDG_CONFIG_HOME/kestrel-mail/  (default: ~/.config/kestrel-mail/)
#   - State:   $XDG_STATE_HOME/kestrel-mail/   (default: ~/.local/state/kestrel-mail/)
#
# Files:
#   - config.toml: Accounts and preferences
#   - kestrel.log: Application log (in state directory)
#
# Settings consumed by the core:
#   - general.refresh_interval: seconds between automatic tree refreshes
#     (0 or less disables the timer)
#   - ui.message_display_mode: "window", "preview" or "split"
#   - ui.locale: locale override for date formatting
# =============================================================================

import os
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import tomli_w  # For writing TOML (tomllib is read-only)

from kestrel_mail.core import Account


# =============================================================================
# XDG Directory Management
# =============================================================================

# Application identifier used in all XDG paths
APP_NAME = "kestrel-mail"


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory for Kestrel Mail.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/kestrel-mail/
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def get_xdg_state_home() -> Path:
    """
    Returns the XDG state directory for Kestrel Mail.

    Respects $XDG_STATE_HOME if set, otherwise uses ~/.local/state/kestrel-mail/
    This is where the log file lives.
    """
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base = Path(xdg_state)
    else:
        base = Path.home() / ".local" / "state"
    return base / APP_NAME


def ensure_directories() -> dict[str, Path]:
    """
    Creates all required XDG directories if they don't exist.

    Returns:
        Dictionary mapping directory type to path.
    """
    dirs = {
        "config": get_xdg_config_home(),
        "state": get_xdg_state_home(),
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    return dirs


# =============================================================================
# Configuration Data Structures
# =============================================================================

class MessageDisplayMode(str, Enum):
    """
    How a message is opened from a message list.

        - WINDOW: its own panel, one per message
        - PREVIEW: embedded in the list panel, "back" returns to the list
        - SPLIT: a single reusable panel beside the list
    """
    WINDOW = "window"
    PREVIEW = "preview"
    SPLIT = "split"


@dataclass
class GeneralConfig:
    """
    General settings.

    Attributes:
        refresh_interval: Seconds between automatic folder tree refreshes.
                          0 or a negative value disables automatic refresh.
        download_dir: Where attachments are saved. Empty means ~/Downloads.
        default_account: Account id whose first folder opens on startup.
    """
    refresh_interval: int = 60
    download_dir: str = ""
    default_account: str = ""

    @property
    def download_path(self) -> Path:
        if self.download_dir:
            return Path(self.download_dir).expanduser()
        return Path.home() / "Downloads"


@dataclass
class UIConfig:
    """
    Configuration for the user interface.

    Attributes:
        message_display_mode: How messages are opened (see MessageDisplayMode).
        locale: Locale override for date formatting. Empty = system locale.
        page_size: Number of messages fetched per listing page.
        theme: Textual theme name.
    """
    message_display_mode: MessageDisplayMode = MessageDisplayMode.WINDOW
    locale: str = ""
    page_size: int = 50
    theme: str = "textual-dark"


@dataclass
class Config:
    """
    Main configuration container for Kestrel Mail.

    Attributes:
        general: General settings (refresh interval, downloads).
        ui: User interface settings.
        accounts: Configured accounts, keyed by account id.

    Usage:
        >>> config = Config.load()
        >>> config.general.refresh_interval
        60
    """
    general: GeneralConfig = field(default_factory=GeneralConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    accounts: dict[str, Account] = field(default_factory=dict)

    # Where this config was loaded from / will be saved to
    path: Path | None = None

    # -------------------------------------------------------------------------
    # File Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def config_file_path() -> Path:
        """Returns the path to the main config file."""
        return get_xdg_config_home() / "config.toml"

    @staticmethod
    def log_file_path() -> Path:
        """Returns the path to the log file."""
        return get_xdg_state_home() / "kestrel.log"

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load configuration from a config file.

        If the file doesn't exist, returns the default configuration.

        Args:
            path: Config file to read. Defaults to the XDG location.

        Returns:
            Loaded Config object.

        Raises:
            ConfigError: If the config file exists but is invalid.
        """
        if path is None:
            ensure_directories()
            path = cls.config_file_path()

        if not path.exists():
            return cls(path=path)

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file: {e}") from e

        config = cls._from_dict(data)
        config.path = path
        return config

    def save(self) -> None:
        """
        Save configuration to its file.

        Creates the parent directory if it doesn't exist.
        """
        path = self.path or self.config_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).
        """
        config = cls()

        general = data.get("general", {})
        config.general = GeneralConfig(
            refresh_interval=_as_int(general.get("refresh_interval", 60), "general.refresh_interval"),
            download_dir=general.get("download_dir", ""),
            default_account=general.get("default_account", ""),
        )

        ui = data.get("ui", {})
        mode = ui.get("message_display_mode", MessageDisplayMode.WINDOW.value)
        try:
            display_mode = MessageDisplayMode(mode)
        except ValueError as e:
            choices = ", ".join(m.value for m in MessageDisplayMode)
            raise ConfigError(
                f"ui.message_display_mode must be one of {choices}, got {mode!r}"
            ) from e

        page_size = _as_int(ui.get("page_size", 50), "ui.page_size")
        if page_size <= 0:
            raise ConfigError(f"ui.page_size must be positive, got {page_size}")

        config.ui = UIConfig(
            message_display_mode=display_mode,
            locale=ui.get("locale", ""),
            page_size=page_size,
            theme=ui.get("theme", "textual-dark"),
        )

        # Accounts - each key under [accounts] is an account id
        for account_id, acct in data.get("accounts", {}).items():
            config.accounts[account_id] = Account(
                id=account_id,
                name=acct.get("name", ""),
                host=acct.get("host", ""),
                port=acct.get("port", 993),
                secure=acct.get("secure", True),
                username=acct.get("username", ""),
                smtp_host=acct.get("smtp_host", ""),
                smtp_port=acct.get("smtp_port", 587),
                smtp_secure=acct.get("smtp_secure", False),
                smtp_username=acct.get("smtp_username", ""),
                sent_folder=acct.get("sent_folder", "Sent"),
                drafts_folder=acct.get("drafts_folder", "Drafts"),
                trash_folder=acct.get("trash_folder", "Trash"),
                spam_folder=acct.get("spam_folder", "Junk"),
                archive_folder=acct.get("archive_folder", "Archive"),
                newsletter_folder=acct.get("newsletter_folder", ""),
                custom_folders=list(acct.get("custom_folders", [])),
            )

        return config

    def _to_dict(self) -> dict[str, Any]:
        """
        Convert Config to a dictionary for TOML serialization.
        """
        data: dict[str, Any] = {}

        data["general"] = {
            "refresh_interval": self.general.refresh_interval,
            "download_dir": self.general.download_dir,
            "default_account": self.general.default_account,
        }

        data["ui"] = {
            "message_display_mode": self.ui.message_display_mode.value,
            "locale": self.ui.locale,
            "page_size": self.ui.page_size,
            "theme": self.ui.theme,
        }

        data["accounts"] = {}
        for account_id, account in self.accounts.items():
            data["accounts"][account_id] = {
                "name": account.name,
                "host": account.host,
                "port": account.port,
                "secure": account.secure,
                "username": account.username,
                "smtp_host": account.smtp_host,
                "smtp_port": account.smtp_port,
                "smtp_secure": account.smtp_secure,
                "smtp_username": account.smtp_username,
                "sent_folder": account.sent_folder,
                "drafts_folder": account.drafts_folder,
                "trash_folder": account.trash_folder,
                "spam_folder": account.spam_folder,
                "archive_folder": account.archive_folder,
                "newsletter_folder": account.newsletter_folder,
                "custom_folders": list(account.custom_folders),
            }

        return data


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    return value


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when there's an error loading or parsing configuration."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def print_paths() -> None:
    """
    Print all XDG paths for debugging.
    Useful for users wondering where their config/logs are stored.
    """
    print(f"Config:  {get_xdg_config_home()}")
    print(f"State:   {get_xdg_state_home()}")
    print()
    print(f"Config file:  {Config.config_file_path()}")
    print(f"Log file:     {Config.log_file_path()}")
