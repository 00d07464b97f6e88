"""
Tests for sender extraction and customer matching on incoming mail.
"""

import uuid
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from ..db.email_models import IncomingEmail
from ..db.models import Customer, CustomerContact
from ..services.email_linker import (
    extract_original_sender,
    ignore_email,
    is_freemail_domain,
    link_email,
    manually_link_email,
    match_customer,
    strip_html,
)


class TestExtractOriginalSender:
    def test_direct_mail(self):
        sender = extract_original_sender("Kunde@Firma.dk", "Kunde", "Tilbud", body_text="Hej")
        assert sender.email == "kunde@firma.dk"
        assert sender.name == "Kunde"
        assert sender.is_forwarded is False

    def test_gmail_forward(self):
        body = (
            "Se nedenfor\n\n"
            "---------- Forwarded message ---------\n"
            "From: Peter Holm <Peter@Holm-El.dk>\n"
            "Date: Mon, 3 Jun 2024\n"
        )
        sender = extract_original_sender("salg@eltasolar.dk", "Salg", "Fwd: Solceller", body_text=body)

        assert sender.email == "peter@holm-el.dk"
        assert sender.name == "Peter Holm"
        assert sender.is_forwarded is True

    def test_danish_outlook_forward_in_html(self):
        body = "<div><p>Fra: Karen Jensen &lt;karen@bakkegaarden.dk&gt;</p><p>Sendt: 3. juni</p></div>"
        sender = extract_original_sender("salg@eltasolar.dk", None, "VS: Carport", body_html=body)

        assert sender.email == "karen@bakkegaarden.dk"
        assert sender.name == "Karen Jensen"

    def test_bare_address_header(self):
        sender = extract_original_sender("salg@eltasolar.dk", None, "VS: Carport", body_text="Fra: karen@bakkegaarden.dk\n")
        assert sender.email == "karen@bakkegaarden.dk"
        assert sender.name is None

    def test_forward_subject_without_header(self):
        sender = extract_original_sender("salg@eltasolar.dk", "Salg", "VS: Carport", body_text="Se vedhæftede")
        assert sender.email == "salg@eltasolar.dk"
        assert sender.is_forwarded is True


def test_strip_html():
    value = "<style>p { color: red }</style><script>alert(1)</script><p>Hej&nbsp;med   <b>dig</b></p>"
    assert strip_html(value) == "Hej med dig"


def test_freemail_domains():
    assert is_freemail_domain("Gmail.com") is True
    assert is_freemail_domain("tdcadsl.dk") is True
    assert is_freemail_domain("solgaarden.dk") is False


class TestMatchCustomer:
    def test_customer_email(self, test_db: Session, test_customer: Customer):
        match = match_customer(test_db, "Mette@Solgaarden.dk")
        assert match.customer_id == test_customer.id
        assert match.confidence == "high"
        assert match.matched_on == "email"

    def test_contact_email(self, test_db: Session, test_customer: Customer):
        contact = CustomerContact(customer_id=test_customer.id, name="Bo", email="bo@privat.dk")
        test_db.add(contact)
        test_db.commit()

        match = match_customer(test_db, "bo@privat.dk")
        assert match.customer_id == test_customer.id
        assert match.customer_contact_id == contact.id
        assert match.confidence == "high"

    def test_company_domain(self, test_db: Session, test_customer: Customer):
        match = match_customer(test_db, "bogholderi@solgaarden.dk")
        assert match.customer_id == test_customer.id
        assert match.matched_on == "domain"
        assert match.confidence == "medium"

    def test_freemail_domain_never_matches(self, test_db: Session):
        test_db.add(Customer(
            customer_number="C000009",
            company_name="Privat",
            contact_person="Jens",
            email="jens@gmail.com",
        ))
        test_db.commit()

        match = match_customer(test_db, "anden@gmail.com")
        assert match.customer_id is None
        assert match.confidence == "low"

    def test_inactive_customer_is_skipped(self, test_db: Session, test_customer: Customer):
        test_customer.is_active = False
        test_db.commit()
        assert match_customer(test_db, test_customer.email).customer_id is None


def make_email(db: Session, **values) -> IncomingEmail:
    data = {
        "graph_message_id": f"msg-{uuid.uuid4()}",
        "subject": "Tilbud",
        "sender_email": "ukendt@firma.dk",
        "received_at": datetime.utcnow(),
    }
    data.update(values)
    email = IncomingEmail(**data)
    db.add(email)
    db.flush()
    return email


def test_link_forwarded_email(test_db: Session, test_customer: Customer):
    email = make_email(
        test_db,
        sender_email="anders@gmail.com",
        sender_name="Anders",
        subject="VS: Solceller",
        body_text="Fra: Mette Hansen <mette@solgaarden.dk>\nSendt: mandag",
    )

    match = link_email(test_db, email)

    assert match.customer_id == test_customer.id
    assert email.link_status == "linked"
    assert email.linked_by == "auto"
    assert email.linked_at is not None
    assert email.is_forwarded is True
    assert email.original_sender_email == "mette@solgaarden.dk"
    assert email.original_sender_name == "Mette Hansen"
    assert email.processed_at is not None


def test_unknown_sender_is_unidentified(test_db: Session):
    email = make_email(test_db)
    link_email(test_db, email)

    assert email.link_status == "unidentified"
    assert email.customer_id is None
    assert email.linked_by is None
    assert email.original_sender_email is None


def test_manual_link_and_ignore(test_db: Session, test_customer: Customer):
    email = make_email(test_db)

    manually_link_email(test_db, email, test_customer.id)
    assert email.link_status == "linked"
    assert email.linked_by == "manual"

    assert ignore_email(email).link_status == "ignored"

    with pytest.raises(NotFoundError):
        manually_link_email(test_db, email, uuid.uuid4())
