"""
Links incoming mail to customers.

Forwarded mail is attributed to its original sender, found from the
forward header in the body. The sender address is then matched against
customer emails, contact emails and finally the company domain.
"""

import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from ..core.logging import get_logger
from ..db.email_models import IncomingEmail, LinkStatus
from ..db.models import Customer, CustomerContact

logger = get_logger(__name__)


# Outlook, Gmail and Apple Mail forward headers, Danish and English
FORWARDED_PATTERNS = [
    re.compile(r"Fra:\s*(.+?)\s*<([^>]+@[^>]+)>", re.IGNORECASE),
    re.compile(r"From:\s*(.+?)\s*<([^>]+@[^>]+)>", re.IGNORECASE),
    re.compile(r"Forwarded message.*?From:\s*(.+?)\s*<([^>]+@[^>]+)>", re.IGNORECASE | re.DOTALL),
    re.compile(r"Videresendt besked.*?Fra:\s*(.+?)\s*<([^>]+@[^>]+)>", re.IGNORECASE | re.DOTALL),
    re.compile(r"Fra:\s*([^<\n]+@[^>\s]+)", re.IGNORECASE),
    re.compile(r"From:\s*([^<\n]+@[^>\s]+)", re.IGNORECASE),
    re.compile(r"Afsender:\s*(.+?)\s*<([^>]+@[^>]+)>", re.IGNORECASE),
]

FORWARDED_SUBJECT = re.compile(r"^(VS|Fwd|Fw|VB):\s*", re.IGNORECASE)

# Shared by many unrelated customers, so never used for domain matching
FREEMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com",
    "outlook.com", "hotmail.com", "live.com", "msn.com",
    "yahoo.com", "yahoo.dk",
    "icloud.com", "me.com", "mac.com",
    "protonmail.com", "proton.me",
    "mail.dk", "jubii.dk", "ofir.dk", "stofanet.dk", "tdcadsl.dk",
    "email.dk", "webspeed.dk", "telenet.dk",
})

_STYLE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_SCRIPT = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"\s+")


@dataclass
class ExtractedSender:
    email: str
    name: Optional[str]
    is_forwarded: bool


@dataclass
class CustomerMatch:
    customer_id: Optional[UUID] = None
    customer_contact_id: Optional[UUID] = None
    matched_on: Optional[str] = None  # email, domain
    confidence: str = "low"


def strip_html(value: str) -> str:
    text = _SCRIPT.sub("", _STYLE.sub("", value))
    text = html.unescape(_TAG.sub(" ", text))
    return _SPACE.sub(" ", text).strip()


def is_freemail_domain(domain: str) -> bool:
    return domain.lower() in FREEMAIL_DOMAINS


def extract_original_sender(
    sender_email: str,
    sender_name: Optional[str],
    subject: str,
    body_html: Optional[str] = None,
    body_text: Optional[str] = None,
) -> ExtractedSender:
    """Original sender of a forwarded mail, or the direct sender."""
    search_text = body_text or strip_html(body_html or "")

    for pattern in FORWARDED_PATTERNS:
        match = pattern.search(search_text)
        if not match:
            continue
        if match.lastindex and match.lastindex >= 2:
            name = match.group(1).strip().strip("\"'") or None
            return ExtractedSender(match.group(2).strip().lower(), name, True)
        if "@" in match.group(1):
            return ExtractedSender(match.group(1).strip().lower(), None, True)

    return ExtractedSender(
        email=sender_email.lower(),
        name=sender_name,
        is_forwarded=bool(FORWARDED_SUBJECT.match(subject or "")),
    )


def match_customer(db: Session, email: str) -> CustomerMatch:
    """
    Customer for a sender address.

    Exact customer email and contact email matches are high confidence,
    a match on the company domain is medium.
    """
    address = email.lower()

    customer = db.query(Customer).filter(
        func.lower(Customer.email) == address,
        Customer.is_active.is_(True),
    ).first()
    if customer:
        return CustomerMatch(customer.id, None, "email", "high")

    contact = db.query(CustomerContact).filter(func.lower(CustomerContact.email) == address).first()
    if contact:
        return CustomerMatch(contact.customer_id, contact.id, "email", "high")

    domain = address.split("@")[1] if "@" in address else ""
    if domain and not is_freemail_domain(domain):
        customer = db.query(Customer).filter(
            func.lower(Customer.email).like(f"%@{domain}"),
            Customer.is_active.is_(True),
        ).first()
        if customer:
            return CustomerMatch(customer.id, None, "domain", "medium")

    return CustomerMatch()


def link_email(db: Session, email: IncomingEmail) -> CustomerMatch:
    """Run sender extraction and matching on a stored mail and record the outcome."""
    extracted = extract_original_sender(
        email.sender_email,
        email.sender_name,
        email.subject,
        email.body_html,
        email.body_text,
    )
    match = match_customer(db, extracted.email)
    now = datetime.utcnow()

    email.link_status = LinkStatus.LINKED.value if match.customer_id else LinkStatus.UNIDENTIFIED.value
    email.customer_id = match.customer_id
    email.customer_contact_id = match.customer_contact_id
    email.linked_by = "auto" if match.customer_id else None
    email.linked_at = now if match.customer_id else None
    email.is_forwarded = extracted.is_forwarded
    email.original_sender_email = extracted.email if extracted.is_forwarded else None
    email.original_sender_name = extracted.name if extracted.is_forwarded else None
    email.processed_at = now

    logger.info(
        "Email linked",
        email_id=str(email.id),
        status=email.link_status,
        matched_on=match.matched_on,
        confidence=match.confidence,
        is_forwarded=extracted.is_forwarded,
    )
    return match


def manually_link_email(db: Session, email: IncomingEmail, customer_id: UUID, linked_by: str = "manual") -> IncomingEmail:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError("Customer", customer_id)

    email.link_status = LinkStatus.LINKED.value
    email.customer_id = customer.id
    email.linked_by = linked_by
    email.linked_at = datetime.utcnow()

    logger.info("Email linked manually", email_id=str(email.id), customer_id=str(customer.id))
    return email


def ignore_email(email: IncomingEmail) -> IncomingEmail:
    email.link_status = LinkStatus.IGNORED.value
    return email
