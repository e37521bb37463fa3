"""
Inbox polling: find unseen replies tagged with an RFP token, turn each into a Proposal.

The poll is a straight pipeline. All matching UIDs are searched first, then each message is
fetched and handled on its own, producing one MessageOutcome. Outcomes are collected into an
IngestReport. Only connection-level IMAP failures abort the poll.
"""
import email
import imaplib
import logging
import re
from dataclasses import dataclass, field
from email import policy
from email.errors import MessageError
from email.utils import parseaddr
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement import jsonfields
from procurement.config import MailSettings
from procurement.exceptions import AIServiceError, MailboxError
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.models.vendor import Vendor
from procurement.services.ai_service import AIService
from procurement.services.normalize import normalize_pricing, normalize_proposal_terms

logger = logging.getLogger(__name__)

SUBJECT_MARKER = "RFP"
RFP_ID_PATTERN = re.compile(r"\bRFP-(\d+)\b", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


class Outcome:
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason:
    NO_RFP_TOKEN = "no_rfp_token"
    UNKNOWN_RFP = "unknown_rfp"
    UNKNOWN_VENDOR = "unknown_vendor"
    DUPLICATE = "duplicate"
    EMPTY_BODY = "empty_body"
    UNPARSEABLE = "unparseable"


@dataclass
class InboundEmail:
    uid: str
    subject: str
    sender: str  # bare lowercase address
    body: str
    message_id: str | None = None


@dataclass
class MessageOutcome:
    uid: str
    outcome: str
    reason: str | None = None
    subject: str | None = None
    sender: str | None = None
    proposal_id: int | None = None


@dataclass
class IngestReport:
    results: list[MessageOutcome] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def processed(self) -> int:
        return self._count(Outcome.CREATED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def message(self) -> str:
        if not self.results:
            return "No new emails"
        return f"Processed {self.processed} new proposals"


def extract_rfp_id(subject: str | None) -> int | None:
    m = RFP_ID_PATTERN.search(subject or "")
    return int(m.group(1)) if m else None


def html_to_text(html: str) -> str:
    text = _TAG_PATTERN.sub(" ", html or "")
    text = re.sub(r"[ \t]+", " ", text)
    return _BLANK_LINES.sub("\n\n", text).strip()


def parse_message(uid: str, raw: bytes) -> InboundEmail:
    """Decode a raw RFC 822 message into subject, sender address and a plain-text body."""
    msg = email.message_from_bytes(raw, policy=policy.default)
    subject = str(msg.get("Subject", "") or "").strip()
    sender = parseaddr(str(msg.get("From", "") or ""))[1].strip().lower()
    body = ""
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is not None:
        content = part.get_content()
        body = html_to_text(content) if part.get_content_type() == "text/html" else content
    message_id = msg.get("Message-ID")
    return InboundEmail(
        uid=uid,
        subject=subject,
        sender=sender,
        body=(body or "").strip(),
        message_id=str(message_id).strip() if message_id else None,
    )


def _skip(inbound: InboundEmail, reason: str) -> MessageOutcome:
    logger.info("Skipping email uid=%s from=%s subject=%r: %s", inbound.uid, inbound.sender, inbound.subject, reason)
    return MessageOutcome(
        uid=inbound.uid, outcome=Outcome.SKIPPED, reason=reason, subject=inbound.subject, sender=inbound.sender
    )


def _existing_proposal(db: Session, rfp_id: int, vendor_id: int) -> Proposal | None:
    return db.query(Proposal).filter(Proposal.rfp_id == rfp_id, Proposal.vendor_id == vendor_id).first()


def ingest_email(db: Session, ai: AIService, inbound: InboundEmail) -> MessageOutcome:
    """Match one inbound email to an RFP and vendor and store it as a Proposal."""
    rfp_id = extract_rfp_id(inbound.subject)
    if rfp_id is None:
        return _skip(inbound, SkipReason.NO_RFP_TOKEN)
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        return _skip(inbound, SkipReason.UNKNOWN_RFP)
    vendor = None
    if inbound.sender:
        vendor = db.query(Vendor).filter(func.lower(Vendor.email) == inbound.sender).first()
    if not vendor:
        return _skip(inbound, SkipReason.UNKNOWN_VENDOR)
    if _existing_proposal(db, rfp.id, vendor.id):
        return _skip(inbound, SkipReason.DUPLICATE)
    if not inbound.body:
        return _skip(inbound, SkipReason.EMPTY_BODY)

    try:
        parsed = ai.parse_vendor_response(inbound.body)
    except AIServiceError as e:
        logger.error("Proposal extraction failed for email uid=%s from=%s: %s", inbound.uid, inbound.sender, e)
        return MessageOutcome(
            uid=inbound.uid, outcome=Outcome.FAILED, reason=str(e), subject=inbound.subject, sender=inbound.sender
        )

    proposal = Proposal(
        rfp_id=rfp.id,
        vendor_id=vendor.id,
        raw_email=inbound.body,
        email_subject=inbound.subject[:998] or None,
        message_id=inbound.message_id,
        parsed_data=jsonfields.dumps(parsed),
        pricing=jsonfields.dumps(normalize_pricing(parsed.get("pricing"))),
        terms=jsonfields.dumps(normalize_proposal_terms(parsed.get("terms"))),
    )
    db.add(proposal)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent poll stored the same (rfp, vendor) pair first; any other violation propagates.
        if _existing_proposal(db, rfp.id, vendor.id):
            return _skip(inbound, SkipReason.DUPLICATE)
        raise
    db.refresh(proposal)
    logger.info("Processed proposal %s from %s for RFP %s", proposal.id, vendor.name, rfp.id)
    return MessageOutcome(
        uid=inbound.uid,
        outcome=Outcome.CREATED,
        subject=inbound.subject,
        sender=inbound.sender,
        proposal_id=proposal.id,
    )


class InboxPoller:
    def __init__(self, settings: MailSettings, imap_factory: Callable[..., Any] = imaplib.IMAP4_SSL, mailbox: str = "INBOX"):
        self.settings = settings
        self.mailbox = mailbox
        self._imap_factory = imap_factory

    def _connect(self) -> Any:
        s = self.settings
        try:
            conn = self._imap_factory(s.imap_host, s.imap_port, timeout=s.timeout_seconds)
            conn.login(s.user, s.password)
            status, _ = conn.select(self.mailbox)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"IMAP connection to {s.imap_host}:{s.imap_port} failed: {e}") from e
        if status != "OK":
            raise MailboxError(f"Could not open mailbox {self.mailbox}: {status}")
        return conn

    def _search(self, conn: Any) -> list[bytes]:
        try:
            status, data = conn.uid("search", None, f"(UNSEEN SUBJECT {SUBJECT_MARKER})")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise MailboxError(f"IMAP search failed: {status}")
        return data[0].split() if data and data[0] else []

    def _fetch(self, conn: Any, uid: bytes) -> bytes | None:
        """BODY.PEEK[] leaves the message unseen; it is flagged only once handled."""
        try:
            status, data = conn.uid("fetch", uid, "(BODY.PEEK[])")
        except (imaplib.IMAP4.abort, OSError) as e:
            raise MailboxError(f"IMAP connection lost: {e}") from e
        except imaplib.IMAP4.error as e:
            logger.warning("IMAP fetch failed for uid=%s: %s", uid.decode(), e)
            return None
        if status != "OK":
            return None
        for part in data or []:
            if isinstance(part, tuple) and len(part) > 1:
                return part[1]
        return None

    def _mark_seen(self, conn: Any, uid: bytes) -> None:
        try:
            conn.uid("store", uid, "+FLAGS", "(\\Seen)")
        except imaplib.IMAP4.error as e:
            logger.warning("Could not flag email uid=%s as seen: %s", uid.decode(), e)

    def _handle(self, conn: Any, db: Session, ai: AIService, uid_bytes: bytes) -> MessageOutcome:
        uid = uid_bytes.decode()
        raw = self._fetch(conn, uid_bytes)
        if raw is None:
            logger.warning("Could not fetch email uid=%s", uid)
            return MessageOutcome(uid=uid, outcome=Outcome.FAILED, reason="fetch_failed")
        try:
            inbound = parse_message(uid, raw)
        except (ValueError, LookupError, UnicodeError, MessageError) as e:
            logger.warning("Skipping email uid=%s: could not parse it: %s", uid, e)
            return MessageOutcome(uid=uid, outcome=Outcome.SKIPPED, reason=SkipReason.UNPARSEABLE)
        return ingest_email(db, ai, inbound)

    def poll(self, db: Session, ai: AIService) -> IngestReport:
        """
        Process every unseen message whose subject mentions the RFP marker.
        Handled messages (created or skipped) are flagged seen; failed ones stay unseen for the next poll.
        Raises MailboxError on connection-level failures.
        """
        conn = self._connect()
        report = IngestReport()
        try:
            uids = self._search(conn)
            if not uids:
                logger.info("No new RFP emails found")
            else:
                logger.info("Found %d new RFP emails", len(uids))
            for uid_bytes in uids:
                outcome = self._handle(conn, db, ai, uid_bytes)
                report.results.append(outcome)
                if outcome.outcome != Outcome.FAILED:
                    self._mark_seen(conn, uid_bytes)
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.warning("IMAP logout failed: %s", e)
        logger.info(
            "Inbox poll done: processed=%d skipped=%d failed=%d",
            report.processed, report.skipped, report.failed,
        )
        return report
