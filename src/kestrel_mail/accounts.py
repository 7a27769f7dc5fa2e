# =============================================================================
# Account Store
# =============================================================================
# Persists account configuration (in config.toml) and secrets (in the system
# keyring) and tells interested parties when the account list changes.
#
# Keyring layout:
#   service  = "kestrel-mail:<account id>"
#   username = "imap" or "smtp"
#
# The SMTP password is optional; sending falls back to the IMAP password.
# =============================================================================

import logging
import secrets
import string
import time
from typing import Any, Callable

import keyring
import keyring.errors

from kestrel_mail.config import Config
from kestrel_mail.core import Account
from kestrel_mail.errors import NotFoundError, ValidationError
from kestrel_mail.events import Emitter

logger = logging.getLogger(__name__)

IMAP_SECRET = "imap"
SMTP_SECRET = "smtp"


class AccountStore:
    """
    Account configuration and password storage.

    Usage:
        >>> store = AccountStore(Config.load())
        >>> account = Account(id=store.generate_id(), name="Work", ...)
        >>> store.add_account(account, password="hunter2")
        >>> store.get_password(account.id)
        'hunter2'

    Attributes:
        config: The configuration the accounts are stored in.
    """

    def __init__(
        self,
        config: Config,
        *,
        secret_backend: Any = keyring,
        persist: bool = True,
    ) -> None:
        """
        Initialize the account store.

        Args:
            config: Loaded configuration holding the accounts table.
            secret_backend: Object with keyring's get/set/delete_password API.
            persist: Write config.toml after every change.
        """
        self.config = config
        self._secrets = secret_backend
        self._persist = persist
        self._changed = Emitter()

    def on_accounts_changed(self, listener: Callable[[], Any]) -> Callable[[], None]:
        """Subscribe to account add/update/remove. Returns an unsubscriber."""
        return self._changed.subscribe(listener)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_accounts(self) -> list[Account]:
        return list(self.config.accounts.values())

    def get_account(self, account_id: str) -> Account | None:
        return self.config.accounts.get(account_id)

    def get_password(self, account_id: str) -> str | None:
        """The stored IMAP password, or None."""
        return self._get_secret(account_id, IMAP_SECRET)

    def get_smtp_password(self, account_id: str) -> str | None:
        """The stored SMTP password, or None when the IMAP one is shared."""
        return self._get_secret(account_id, SMTP_SECRET)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_account(
        self,
        account: Account,
        password: str,
        smtp_password: str | None = None,
    ) -> None:
        """
        Add a new account and store its password(s).

        Raises:
            ValidationError: If the id is taken or the password is empty.
        """
        if not account.id:
            raise ValidationError("Account id is required")
        if account.id in self.config.accounts:
            raise ValidationError(f"Account already exists: {account.id}")
        if not password:
            raise ValidationError("Password is required")

        self.config.accounts[account.id] = account
        self._save()
        self._set_secret(account, IMAP_SECRET, password)
        if smtp_password is not None:
            self._set_secret(account, SMTP_SECRET, smtp_password)

        logger.info(f"Added account {account.id}")
        self._changed.fire()

    def update_account(
        self,
        account: Account,
        password: str | None = None,
        smtp_password: str | None = None,
    ) -> None:
        """
        Replace an existing account. Passwords are only touched when given.

        Raises:
            NotFoundError: If no account with that id exists.
        """
        if account.id not in self.config.accounts:
            raise NotFoundError(f"Account not found: {account.id}")

        self.config.accounts[account.id] = account
        self._save()
        if password is not None:
            self._set_secret(account, IMAP_SECRET, password)
        if smtp_password is not None:
            self._set_secret(account, SMTP_SECRET, smtp_password)

        logger.info(f"Updated account {account.id}")
        self._changed.fire()

    def remove_account(self, account_id: str) -> None:
        """Remove an account and its stored passwords."""
        account = self.config.accounts.pop(account_id, None)
        if account is None:
            return

        self._save()
        for secret in (IMAP_SECRET, SMTP_SECRET):
            try:
                self._secrets.delete_password(account.keyring_service, secret)
            except keyring.errors.PasswordDeleteError:
                # Nothing stored under that name
                pass

        logger.info(f"Removed account {account_id}")
        self._changed.fire()

    @staticmethod
    def generate_id() -> str:
        """A fresh account id, e.g. "account-1718040000-k3j9x2a"."""
        alphabet = string.ascii_lowercase + string.digits
        suffix = "".join(secrets.choice(alphabet) for _ in range(7))
        return f"account-{int(time.time() * 1000)}-{suffix}"

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get_secret(self, account_id: str, secret: str) -> str | None:
        account = self.get_account(account_id)
        if account is None:
            return None
        return self._secrets.get_password(account.keyring_service, secret)

    def _set_secret(self, account: Account, secret: str, value: str) -> None:
        self._secrets.set_password(account.keyring_service, secret, value)

    def _save(self) -> None:
        if self._persist:
            self.config.save()
