"""Link chat identities to customer accounts from account numbers typed in chat."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from tracker.audit import AuditAction
from tracker.errors import AccountLookupError, TransportError
from tracker.notifications.templates import LINK_CONFIRMATION_TEMPLATE, text_message

logger = logging.getLogger(__name__)

DIGIT_RUN = re.compile(r"\d+")


@dataclass
class ChatEvent:
    """An inbound, already-verified chat text message."""

    sender_identity: str
    text: str
    reply_channel: Optional[str] = None


class LinkingHandler:
    """Claim accounts for the sender of a chat message.

    Every maximal run of digits at least ``min_digits`` long is looked up as an
    account number.  Each match is linked to the sender and acknowledged in a
    single reply, since a reply channel can only be used once.
    """

    def __init__(self, store, transport, audit_log=None, min_digits: int = 5):
        self._store = store
        self._transport = transport
        self._audit = audit_log
        self._min_digits = min_digits

    def candidate_numbers(self, text: str) -> list[str]:
        """Digit runs in ``text`` long enough to be account numbers."""
        return [run for run in DIGIT_RUN.findall(text or "") if len(run) >= self._min_digits]

    def handle(self, event: ChatEvent) -> list[str]:
        """Link every account number found in the message. Returns linked numbers."""
        linked = []
        confirmations = []

        for number in self.candidate_numbers(event.text):
            try:
                account = self._store.get(number)
                if account is None:
                    continue
                updated = self._store.update(number, recipient_id=event.sender_identity)
            except AccountLookupError:
                logger.exception("Account lookup failed for %s", number)
                continue
            if updated is None:
                continue

            linked.append(number)
            confirmations.append(
                text_message(
                    LINK_CONFIRMATION_TEMPLATE.format(
                        account_number=number, license=updated.license
                    )
                )
            )
            if account.recipient_id and account.recipient_id != event.sender_identity:
                logger.info(
                    "Account %s re-linked from %s to %s",
                    number, account.recipient_id, event.sender_identity,
                )
            else:
                logger.info("Account %s linked to %s", number, event.sender_identity)
            self._record(number, event.sender_identity)

        if confirmations and event.reply_channel:
            try:
                self._transport.reply(event.reply_channel, confirmations)
            except TransportError as exc:
                logger.warning("Could not send link confirmation: %s", exc)

        return linked

    def _record(self, account_number: str, recipient_id: str) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log(
                AuditAction.ACCOUNT_LINK, account_number,
                f"Linked to {recipient_id}", user=recipient_id,
            )
        except Exception:
            logger.exception("Failed to write account link to audit log")
