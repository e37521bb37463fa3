"""Pytest configuration and shared fixtures."""

import imaplib
import json
import os
import smtplib
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import make_msgid

# The app module builds its engine at import time; never point it at a real server.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procurement import jsonfields
from procurement.config import MailSettings
from procurement.database import get_db
from procurement.dependencies import get_ai_service, get_inbox_poller, get_mailer
from procurement.main import app
from procurement.models.base import Base
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.services.ai_service import AIService
from procurement.services.email_service import RFPMailer
from procurement.services.inbox_service import InboxPoller

MAIL_SETTINGS = MailSettings(
    smtp_host="smtp.test",
    smtp_port=587,
    imap_host="imap.test",
    imap_port=993,
    user="procurement@example.com",
    password="secret",
)


class FakeCompletion:
    """Stands in for CompletionClient: replays queued responses; an empty queue means unreachable."""

    provider = "fake"

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def complete(self, system: str, user_content: str) -> str:
        self.calls.append((system, user_content))
        if not self.responses:
            raise ConnectionError("completion service unreachable")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


class FakeSMTP:
    """Callable like smtplib.SMTP; records what would have been sent."""

    def __init__(self, fail_for=(), fail_login=False):
        self.fail_for = {a.lower() for a in fail_for}
        self.fail_login = fail_login
        self.sent = []
        self.started_tls = False
        self.logged_in_as = None
        self.quit_called = False
        self.connected_to = None

    def __call__(self, host, port, timeout=None):
        self.connected_to = (host, port)
        return self

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        if self.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"5.7.8 Authentication failed")
        self.logged_in_as = user

    def send_message(self, msg):
        if msg["To"].lower() in self.fail_for:
            raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"mailbox unavailable")})
        self.sent.append(msg)

    def quit(self):
        self.quit_called = True


class FakeIMAP:
    """Callable like imaplib.IMAP4_SSL; a mailbox of uid -> raw message with a seen set."""

    def __init__(self, messages=None, fail_login=False):
        self.messages = dict(messages or {})
        self.seen = set()
        self.fail_login = fail_login
        self.logged_out = False
        self.search_criteria = None

    def __call__(self, host, port, timeout=None):
        return self

    def add(self, uid: bytes, raw: bytes):
        self.messages[uid] = raw

    def login(self, user, password):
        if self.fail_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        return "OK", [b"LOGIN completed"]

    def select(self, mailbox="INBOX"):
        return "OK", [str(len(self.messages)).encode()]

    def _subject(self, raw: bytes) -> str:
        return str(message_from_bytes(raw, policy=policy.default).get("Subject", ""))

    def uid(self, command, *args):
        if command == "search":
            self.search_criteria = args[1]
            uids = [u for u, raw in self.messages.items() if u not in self.seen and "rfp" in self._subject(raw).lower()]
            return "OK", [b" ".join(uids)]
        if command == "fetch":
            uid = args[0]
            raw = self.messages.get(uid)
            if raw is None:
                return "NO", [None]
            return "OK", [(b"1 (UID " + uid + b" BODY[] {" + str(len(raw)).encode() + b"}", raw), b")"]
        if command == "store":
            self.seen.add(args[0])
            return "OK", [None]
        raise AssertionError(f"unexpected IMAP command {command}")

    def logout(self):
        self.logged_out = True
        return "BYE", [b"Logging out"]


def make_email(subject: str, sender: str, body: str, html: bool = False) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = MAIL_SETTINGS.user
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain="vendor.test")
    if html:
        msg.set_content(body, subtype="html")
    else:
        msg.set_content(body)
    return msg.as_bytes()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def ai_service(fake_completion) -> AIService:
    return AIService(fake_completion)


@pytest.fixture
def fake_smtp() -> FakeSMTP:
    return FakeSMTP()


@pytest.fixture
def fake_imap() -> FakeIMAP:
    return FakeIMAP()


@pytest.fixture
def mailer(fake_smtp) -> RFPMailer:
    return RFPMailer(MAIL_SETTINGS, smtp_factory=fake_smtp)


@pytest.fixture
def poller(fake_imap) -> InboxPoller:
    return InboxPoller(MAIL_SETTINGS, imap_factory=fake_imap)


@pytest.fixture
def client(db_session, ai_service, mailer, poller):
    """FastAPI test client wired to the in-memory database and the fakes."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_ai_service] = lambda: ai_service
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_inbox_poller] = lambda: poller
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def vendor_factory(db_session):
    counter = {"n": 0}

    def make(**kw) -> Vendor:
        counter["n"] += 1
        n = counter["n"]
        vendor = Vendor(
            name=kw.get("name", f"Vendor {n}"),
            email=kw.get("email", f"sales{n}@vendor{n}.test").lower(),
            phone=kw.get("phone"),
            company=kw.get("company", f"Vendor {n} Ltd"),
            address=kw.get("address"),
        )
        db_session.add(vendor)
        db_session.commit()
        db_session.refresh(vendor)
        return vendor

    return make


@pytest.fixture
def rfp_factory(db_session):
    def make(**kw) -> RFP:
        rfp = RFP(
            title=kw.get("title", "Office laptops"),
            description=kw.get("description", "20 laptops with 16GB RAM, budget $50,000, delivery in 30 days"),
            items=jsonfields.dumps(kw.get("items", [
                {"name": "Laptop", "quantity": 20, "specifications": "16GB RAM"},
                {"name": "Monitor", "quantity": 15, "specifications": "27-inch"},
            ])),
            budget=kw.get("budget", 50000.0),
            deadline=kw.get("deadline", datetime(2026, 12, 1, tzinfo=timezone.utc)),
            terms=jsonfields.dumps(kw.get("terms", {
                "paymentTerms": "Net 30",
                "warranty": "1 year",
                "deliveryTerms": "30 days",
                "otherTerms": None,
            })),
            vendor_ids=jsonfields.dumps(kw.get("vendor_ids", [])),
            status=kw.get("status", RFPStatus.DRAFT),
        )
        db_session.add(rfp)
        db_session.commit()
        db_session.refresh(rfp)
        return rfp

    return make


@pytest.fixture
def proposal_factory(db_session):
    def make(rfp: RFP, vendor: Vendor, total_price=None, **kw) -> Proposal:
        proposal = Proposal(
            rfp_id=rfp.id,
            vendor_id=vendor.id,
            raw_email=kw.get("raw_email", f"Our quote is ${total_price}"),
            parsed_data=jsonfields.dumps(kw.get("parsed_data", {"notes": "n/a"})),
            pricing=jsonfields.dumps({"totalPrice": total_price, "itemPrices": [], "currency": "USD"}),
            terms=jsonfields.dumps(kw.get("terms", {
                "paymentTerms": "Net 30",
                "warranty": "1 year",
                "deliveryTime": "2 weeks",
                "otherTerms": None,
            })),
        )
        db_session.add(proposal)
        db_session.commit()
        db_session.refresh(proposal)
        return proposal

    return make
