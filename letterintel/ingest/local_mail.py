"""Read newsletters from a local Maildir or mbox export."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mailbox
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from pathlib import Path

from letterintel.ingest import register_source
from letterintel.ingest.base import BaseSource
from letterintel.models import RawMessage

logger = logging.getLogger(__name__)


def make_source_id(
    message_id: str | None,
    list_id: str | None,
    sender: str,
    subject: str,
    date: str | None,
) -> str:
    """Stable natural key for a message.

    Message-ID when present, otherwise a hash of list id, sender, subject
    and date header.
    """
    if message_id and message_id.strip():
        return message_id.strip().strip("<>")
    raw = "|".join([list_id or "", sender, subject, date or ""])
    return "sha256:" + hashlib.sha256(raw.encode()).hexdigest()[:32]


def _to_utc_naive(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _body_part(msg: EmailMessage, subtype: str) -> str:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None or part.get_content_subtype() != subtype:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_message(raw: bytes, source: str = "mailbox") -> RawMessage:
    """Parse raw RFC 822 bytes into a RawMessage."""
    msg = BytesParser(policy=policy.default).parsebytes(raw)

    sender_name, sender_email = parseaddr(str(msg.get("From", "")))
    subject = str(msg.get("Subject", "")).strip()
    date_header = msg.get("Date")
    sent_at = None
    if date_header:
        try:
            sent_at = _to_utc_naive(parsedate_to_datetime(str(date_header)))
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header: %s", date_header)

    return RawMessage(
        source_id=make_source_id(
            msg.get("Message-ID"),
            msg.get("List-Id"),
            sender_email,
            subject,
            str(date_header) if date_header else None,
        ),
        sender_email=sender_email,
        sender_name=sender_name,
        subject=subject,
        body_text=_body_part(msg, "plain"),
        body_html=_body_part(msg, "html"),
        sent_at=sent_at,
        source=source,
    )


@register_source("mailbox")
class MailboxSource(BaseSource):
    """Newsletter messages from a Maildir directory or mbox file on disk."""

    @property
    def name(self) -> str:
        return "mailbox"

    async def fetch_new_messages(self, since: datetime | None = None) -> list[RawMessage]:
        # sent_at is stored as naive UTC
        return await asyncio.to_thread(self._read, _to_utc_naive(since))

    def _open(self) -> mailbox.Mailbox:
        cfg = self.config.get("sources", {}).get("mailbox", {})
        path = Path(cfg.get("path", "data/mail"))
        fmt = cfg.get("format", "maildir")
        if fmt == "maildir":
            return mailbox.Maildir(str(path), factory=None, create=False)
        if fmt == "mbox":
            return mailbox.mbox(str(path), create=False)
        raise ValueError(f"Unknown mailbox format: {fmt}")

    def _read(self, since: datetime | None) -> list[RawMessage]:
        box = self._open()
        messages = []
        skipped = 0
        try:
            for key in box.keys():
                try:
                    message = parse_message(box.get_bytes(key), source=self.name)
                except Exception:
                    logger.exception("Failed to parse message %s", key)
                    skipped += 1
                    continue
                if since and message.sent_at and message.sent_at <= since:
                    continue
                messages.append(message)
        finally:
            box.close()

        logger.info(
            "Read %d messages from mailbox (%d unparseable)", len(messages), skipped,
        )
        return messages
