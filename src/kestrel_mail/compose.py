# =============================================================================
# Compose
# =============================================================================
# Draft prefill for reply / reply all / forward, and sending.
#
# Prefill rules:
#   - reply:     To = original sender; "Re: " added unless already there
#   - reply all: To = sender + original To (minus ourselves and the sender),
#                Cc = original Cc (minus ourselves)
#   - forward:   no recipients; "Fwd: " added unless already there; the
#                original text is quoted below a forward header
#
# Sending uses the SMTP password, falling back to the IMAP password, and then
# files a copy (flagged \Seen) in the account's Sent folder. Filing is best
# effort: the message is already sent when it runs.
# =============================================================================

import logging
from enum import Enum
from typing import Callable

from kestrel_mail.accounts import AccountStore
from kestrel_mail.core import Account, MessageDetail
from kestrel_mail.errors import MailError, NotFoundError, ValidationError
from kestrel_mail.explorer import MailExplorer
from kestrel_mail.smtp import EmailDraft, SMTPClient

logger = logging.getLogger(__name__)

SmtpFactory = Callable[[Account, str], SMTPClient]


class ComposeMode(str, Enum):
    COMPOSE = "compose"
    REPLY = "reply"
    REPLY_ALL = "replyAll"
    FORWARD = "forward"


def prefixed_subject(subject: str, prefix: str) -> str:
    """
    Add "Re:" / "Fwd:" unless the subject already starts with it.

    Example:
        >>> prefixed_subject("re: Lunch", "Re:")
        're: Lunch'
    """
    subject = subject or ""
    if subject.lower().startswith(prefix.lower()):
        return subject
    return f"{prefix} {subject}".rstrip()


def reply_draft(account: Account, original: MessageDetail, *, reply_all: bool = False) -> EmailDraft:
    """A reply (or reply-all) draft for a fetched message."""
    own = {account.username.lower(), account.smtp_login.lower()}
    sender = original.sender.address
    to = [sender]
    cc: list[str] = []

    if reply_all:
        for recipient in original.to:
            address = recipient.address
            if address.lower() not in own and address.lower() != sender.lower():
                to.append(address)
        for recipient in original.cc:
            if recipient.address.lower() not in own:
                cc.append(recipient.address)

    references = list(original.references)
    if original.message_id and original.message_id not in references:
        references.append(original.message_id)

    date_str = original.date.strftime("%Y-%m-%d %H:%M") if original.date else "unknown date"
    quoted = "".join(f"> {line}\n" for line in (original.text or "").split("\n"))

    return EmailDraft(
        to=to,
        cc=cc,
        subject=prefixed_subject(original.subject, "Re:"),
        body_text=f"\n\nOn {date_str}, {original.display_sender} wrote:\n{quoted}",
        in_reply_to=original.message_id,
        references=references,
    )


def forward_draft(original: MessageDetail) -> EmailDraft:
    date_str = original.date.strftime("%Y-%m-%d %H:%M") if original.date else "unknown date"
    header = (
        "\n\n---------- Forwarded message ----------\n"
        f"From: {original.sender}\n"
        f"Date: {date_str}\n"
        f"Subject: {original.subject}\n"
        f"To: {', '.join(str(a) for a in original.to)}\n"
    )
    if original.cc:
        header += f"Cc: {', '.join(str(a) for a in original.cc)}\n"

    return EmailDraft(
        subject=prefixed_subject(original.subject, "Fwd:"),
        body_text=header + "\n" + (original.text or ""),
    )


def prefill(mode: ComposeMode, account: Account, original: MessageDetail | None) -> EmailDraft:
    """The starting draft for a compose mode."""
    if mode is ComposeMode.COMPOSE or original is None:
        return EmailDraft()
    if mode is ComposeMode.FORWARD:
        return forward_draft(original)
    return reply_draft(account, original, reply_all=mode is ComposeMode.REPLY_ALL)


async def send_draft(
    accounts: AccountStore,
    explorer: MailExplorer,
    account_id: str,
    draft: EmailDraft,
    smtp_factory: SmtpFactory = SMTPClient,
) -> str:
    """
    Send a draft from an account and file it in the Sent folder.

    Returns:
        The Message-ID of the sent message.

    Raises:
        ValidationError: Missing recipients/subject or no password at all.
        SMTPError: Connecting or sending failed.
    """
    account = accounts.get_account(account_id)
    if account is None:
        raise NotFoundError(f"Account not found: {account_id}")
    if not draft.to:
        raise ValidationError("At least one recipient is required")
    if not draft.subject.strip():
        raise ValidationError("Subject is required")

    password = accounts.get_smtp_password(account_id) or accounts.get_password(account_id)
    if not password:
        raise ValidationError("No SMTP password found for this account")

    client = smtp_factory(account, password)
    await client.connect()
    try:
        message_id, raw = await client.send(draft)
    finally:
        await client.disconnect()

    sent_folder = account.sent_folder or "Sent"
    try:
        session = await explorer.connect_account(account_id)
        await session.append_message(sent_folder, raw, ["\\Seen"])
    except MailError as e:
        logger.warning(f"Sent {message_id} but could not file it in {sent_folder}: {e}")
    else:
        explorer.invalidate_account(account_id)

    return message_id
