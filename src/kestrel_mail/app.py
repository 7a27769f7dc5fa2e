# =============================================================================
# Kestrel Mail Application
# =============================================================================
# The Textual application and the composition root. Everything stateful is
# created here, once, and handed down:
#
#   Config -> AccountStore -> MailExplorer -> PanelRegistry -> CommandRouter
#                                  \-> RefreshCoordinator
#
# Layout:
#   ┌──────────────────────────────────────────────────┐
#   │                      Header                      │
#   ├──────────────┬───────────────────────────────────┤
#   │ FolderTree   │ TabbedContent (one tab per panel) │
#   ├──────────────┴───────────────────────────────────┤
#   │                      Footer                      │
#   └──────────────────────────────────────────────────┘
# =============================================================================

import argparse
import locale
import logging
import logging.handlers
import sys
from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer, Header, TabbedContent

from kestrel_mail import __app_name__, __version__
from kestrel_mail.accounts import AccountStore
from kestrel_mail.commands import AccountForm, CommandRouter
from kestrel_mail.compose import ComposeMode
from kestrel_mail.config import Config, ConfigError, print_paths
from kestrel_mail.core import Account, MessageDetail
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.panels import FolderRef, PanelRegistry
from kestrel_mail.refresh import RefreshCoordinator
from kestrel_mail.smtp import EmailDraft
from kestrel_mail.ui import (
    AccountScreen,
    ComposeScreen,
    FolderTree,
    TextualNotifier,
    TextualPanelHost,
    ask,
)

logger = logging.getLogger(__name__)

# Log file rotation
MAX_LOG_SIZE = 5 * 1024 * 1024
BACKUP_COUNT = 3


class KestrelApp(App):
    """
    The main Kestrel Mail application.

    Attributes:
        config: The loaded application configuration.
        accounts: Account store (config + keyring).
        explorer: Folder tree provider and session registry.
        registry: Open panels.
        router: Named commands.
        refresher: Periodic folder refresh.
    """

    TITLE = "Kestrel Mail"

    CSS = """
    #folder-tree {
        width: 32;
        border-right: solid $primary;
    }

    #panels {
        width: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", priority=True),
        Binding("c", "compose", "Compose"),
        Binding("a", "add_account", "Add Account"),
        Binding("ctrl+r", "refresh", "Refresh"),
        Binding("ctrl+l", "reconnect", "Reconnect", show=False),
        Binding("w", "close_tab", "Close Tab"),
        Binding("ctrl+o", "reload_config", "Reload Config", show=False),
    ]

    def __init__(
        self,
        config: Config | None = None,
        *,
        config_error: str | None = None,
    ) -> None:
        """
        Args:
            config: Pre-loaded configuration. Loaded from the default
                    location if not given.
            config_error: Error from loading the configuration, shown on
                          startup.
        """
        super().__init__()
        self._config_error = config_error

        if config is None:
            try:
                config = Config.load()
            except ConfigError as e:
                config = Config()
                self._config_error = str(e)
        self.config = config

        self.accounts = AccountStore(config)
        self.explorer = MailExplorer(self.accounts)
        self.host = TextualPanelHost(self, "#panels")
        self.registry = PanelRegistry(self.explorer, self.host, config.ui)
        self.router = CommandRouter(
            self.accounts,
            self.explorer,
            self.registry,
            TextualNotifier(self),
            open_compose=self.open_compose,
            open_account_form=self.open_account_form,
            download_dir=config.general.download_path,
            default_account=config.general.default_account,
        )
        self.refresher = RefreshCoordinator(self.explorer, config.general.refresh_interval)
        self._shut_down = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield FolderTree(self.explorer, self.router, self.accounts, id="folder-tree")
            yield TabbedContent(id="panels")
        yield Footer()

    def on_mount(self) -> None:
        if self._config_error:
            self.notify(f"Config error: {self._config_error}", severity="error", timeout=10)

        if self.config.ui.theme in self.available_themes:
            self.theme = self.config.ui.theme
        else:
            logger.warning(f"Unknown theme {self.config.ui.theme!r}")

        apply_locale(self.config.ui.locale)
        self.run_worker(self.startup(), group="startup", exclusive=True)

    async def startup(self) -> None:
        """Connect accounts, fill the tree and open the first folder."""
        connected = await self.explorer.auto_connect()
        await self.query_one(FolderTree).reload()
        self.refresher.start()

        if not self.accounts.list_accounts():
            self.notify("No accounts configured. Press a to add one.")
            return
        if not connected:
            return

        default = self.config.general.default_account
        account_id = default if default in connected else connected[0]
        item = await self.explorer.default_folder(account_id)
        if item is not None:
            await self.router.execute(
                "openFolder", FolderRef(account_id, item.folder_path, item.label)
            )

    async def open_compose(
        self,
        mode: ComposeMode,
        account: Account,
        draft: EmailDraft,
        original: MessageDetail | None,
    ) -> None:
        await self.push_screen(ComposeScreen(self.accounts, self.explorer, account, draft, mode))

    async def open_account_form(self, form: AccountForm) -> AccountForm | None:
        new = self.accounts.get_account(form.account.id) is None
        return await ask(self, AccountScreen(form, self.router.check_account, new=new))

    async def shutdown(self) -> None:
        """Stop the timer, close every panel and log out of every account."""
        if self._shut_down:
            return
        self._shut_down = True
        await self.refresher.stop()
        self.registry.dispose_all()
        await self.explorer.dispose()

    # -------------------------------------------------------------------------
    # Action Handlers
    # -------------------------------------------------------------------------

    async def action_quit(self) -> None:
        await self.shutdown()
        self.exit()

    def action_compose(self) -> None:
        self.run_worker(self.router.execute("compose"), group="commands")

    def action_add_account(self) -> None:
        self.run_worker(self.router.execute("addAccount"), group="commands")

    def action_refresh(self) -> None:
        self.run_worker(self.router.execute("refreshFolders"), group="commands")

    def action_reconnect(self) -> None:
        self.run_worker(self.router.execute("reconnect"), group="commands")

    def action_close_tab(self) -> None:
        surface = self.host.active_surface()
        if surface is not None:
            surface.dispose()

    async def action_reload_config(self) -> None:
        """Re-read [general] and [ui] from the config file."""
        try:
            fresh = Config.load(self.config.path)
        except ConfigError as e:
            self.notify(f"Config error: {e}", severity="error", timeout=10)
            return

        self.config.general = fresh.general
        self.config.ui = fresh.ui
        self.registry.ui = fresh.ui
        self.router.download_dir = fresh.general.download_path
        self.router.default_account = fresh.general.default_account
        apply_locale(fresh.ui.locale)
        await self.refresher.restart(fresh.general.refresh_interval)
        self.notify("Configuration reloaded", timeout=3)


# =============================================================================
# Process Setup
# =============================================================================

def setup_logging(debug: bool = False, path: Path | None = None) -> Path:
    """
    Log to a rotating file; the terminal belongs to Textual.

    Returns:
        The log file path.
    """
    path = path or Config.log_file_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.handlers.RotatingFileHandler(
        filename=str(path),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # aioimaplib logs every command at DEBUG
    logging.getLogger("aioimaplib").setLevel(logging.DEBUG if debug else logging.WARNING)

    logger.info(f"{__app_name__} {__version__} starting, log level {logging.getLevelName(level)}")
    return path


def apply_locale(name: str) -> None:
    """Use a locale for date formatting; empty means the system locale."""
    try:
        locale.setlocale(locale.LC_TIME, name)
    except locale.Error as e:
        logger.warning(f"Cannot use locale {name!r}: {e}")


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Kestrel Mail: an IMAP/SMTP mail client for the terminal",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: XDG config location)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for Kestrel Mail.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)

    if args.paths:
        print_paths()
        return 0

    setup_logging(args.debug)

    config_error = None
    try:
        config = Config.load(args.config)
    except ConfigError as e:
        if args.config:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        config, config_error = Config(), str(e)

    KestrelApp(config=config, config_error=config_error).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
