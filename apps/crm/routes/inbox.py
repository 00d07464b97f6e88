"""
Shared mailbox routes: browsing pulled mail, linking it to customers and
triggering a Graph sync.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import NotFoundError
from ..core.logging import get_logger
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..core.settings import settings
from ..db.email_models import GraphSyncState, IncomingEmail, LinkStatus
from ..db.models import User
from ..integrations.graph import get_graph_client
from ..services.customers import create_customer, find_customer_by_email
from ..services.email_linker import ignore_email, manually_link_email
from ..services.email_sync import run_email_sync

logger = get_logger(__name__)
router = APIRouter()


class EmailLink(BaseModel):
    customer_id: UUID


class CustomerFromEmail(BaseModel):
    company_name: Optional[str] = Field(None, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = None


def email_to_dict(email: IncomingEmail, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(email.id),
        "subject": email.subject,
        "sender_email": email.sender_email,
        "sender_name": email.sender_name,
        "to_email": email.to_email,
        "body_preview": email.body_preview,
        "has_attachments": email.has_attachments,
        "is_read": email.is_read,
        "is_archived": email.is_archived,
        "received_at": email.received_at.isoformat(),
        "link_status": email.link_status,
        "linked_by": email.linked_by,
        "customer_id": str(email.customer_id) if email.customer_id else None,
        "customer_name": email.customer.company_name if email.customer else None,
        "is_forwarded": email.is_forwarded,
        "original_sender_email": email.original_sender_email,
        "original_sender_name": email.original_sender_name,
    }
    if detail:
        data.update({
            "conversation_id": email.conversation_id,
            "cc": email.cc or [],
            "reply_to": email.reply_to,
            "body_html": email.body_html,
            "body_text": email.body_text,
            "customer_contact_id": str(email.customer_contact_id) if email.customer_contact_id else None,
            "linked_at": email.linked_at.isoformat() if email.linked_at else None,
        })
    return data


def get_email_or_404(db: Session, email_id: UUID) -> IncomingEmail:
    email = db.query(IncomingEmail).filter(IncomingEmail.id == email_id).first()
    if not email:
        raise NotFoundError("Email", email_id)
    return email


@router.get("")
async def list_emails(
    link_status: Optional[LinkStatus] = None,
    customer_id: Optional[UUID] = None,
    is_read: Optional[bool] = None,
    is_archived: bool = False,
    search: Optional[str] = None,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    query = db.query(IncomingEmail).filter(IncomingEmail.is_archived.is_(is_archived))

    if link_status:
        query = query.filter(IncomingEmail.link_status == link_status.value)
    if customer_id:
        query = query.filter(IncomingEmail.customer_id == customer_id)
    if is_read is not None:
        query = query.filter(IncomingEmail.is_read.is_(is_read))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                IncomingEmail.subject.ilike(term),
                IncomingEmail.sender_email.ilike(term),
                IncomingEmail.sender_name.ilike(term),
                IncomingEmail.original_sender_email.ilike(term),
            )
        )

    emails, total = paginate_with_total(query.order_by(IncomingEmail.received_at.desc()), pagination)
    return {
        "emails": [email_to_dict(email) for email in emails],
        **page_meta(total, len(emails), pagination),
    }


@router.get("/stats")
async def inbox_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, int]:
    active = db.query(IncomingEmail).filter(IncomingEmail.is_archived.is_(False))
    counts = dict(
        db.query(IncomingEmail.link_status, func.count(IncomingEmail.id))
        .filter(IncomingEmail.is_archived.is_(False))
        .group_by(IncomingEmail.link_status)
        .all()
    )
    return {
        "total": active.count(),
        "unread": active.filter(IncomingEmail.is_read.is_(False)).count(),
        **{link_status.value: counts.get(link_status.value, 0) for link_status in LinkStatus},
    }


@router.get("/sync/state")
async def sync_state(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    mailbox = settings.GRAPH_MAILBOX.lower()
    state = db.query(GraphSyncState).filter(GraphSyncState.mailbox == mailbox).first()
    if state is None:
        return {"mailbox": mailbox, "last_sync_at": None, "last_sync_status": None, "emails_synced_total": 0}
    return {
        "mailbox": state.mailbox,
        "last_sync_at": state.last_sync_at.isoformat() if state.last_sync_at else None,
        "last_sync_status": state.last_sync_status,
        "last_sync_error": state.last_sync_error,
        "emails_synced_total": state.emails_synced_total,
        "has_delta_link": bool(state.delta_link),
    }


@router.post("/sync")
async def trigger_sync(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Pull new mail from the shared mailbox and auto-link it."""
    logger.info("Manual email sync requested", user_id=str(current_user.id))
    result = await run_email_sync(db, get_graph_client())
    return result.model_dump()


@router.get("/graph/test")
async def test_graph_connection(
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return await get_graph_client().test_connection()


@router.get("/{email_id}")
async def get_email(
    email_id: UUID,
    mark_read: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    email = get_email_or_404(db, email_id)
    if mark_read and not email.is_read:
        email.is_read = True
        db.commit()
        db.refresh(email)
    return email_to_dict(email, detail=True)


@router.post("/{email_id}/read")
async def set_read(
    email_id: UUID,
    is_read: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    email = get_email_or_404(db, email_id)
    email.is_read = is_read
    db.commit()
    return {"id": str(email.id), "is_read": email.is_read}


@router.post("/{email_id}/archive")
async def set_archived(
    email_id: UUID,
    is_archived: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    email = get_email_or_404(db, email_id)
    email.is_archived = is_archived
    db.commit()
    return {"id": str(email.id), "is_archived": email.is_archived}


@router.post("/{email_id}/link")
async def link_to_customer(
    email_id: UUID,
    link_data: EmailLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    email = get_email_or_404(db, email_id)
    manually_link_email(db, email, link_data.customer_id)
    db.commit()
    db.refresh(email)
    return email_to_dict(email, detail=True)


@router.post("/{email_id}/ignore")
async def ignore(
    email_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    email = ignore_email(get_email_or_404(db, email_id))
    db.commit()
    db.refresh(email)
    return email_to_dict(email)


@router.post("/{email_id}/create-customer")
async def create_customer_from_email(
    email_id: UUID,
    customer_data: CustomerFromEmail,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """
    Create a customer from the (original) sender and link the mail to it.

    When a customer with that address already exists the mail is linked to
    it instead.
    """
    email = get_email_or_404(db, email_id)
    address = (email.original_sender_email or email.sender_email).lower()
    name = email.original_sender_name or email.sender_name or address

    customer = find_customer_by_email(db, address)
    created = customer is None
    if created:
        customer = create_customer(
            db,
            {
                "company_name": customer_data.company_name or name,
                "contact_person": customer_data.contact_person or name,
                "email": address,
                "phone": customer_data.phone,
            },
            current_user.id,
        )

    manually_link_email(db, email, customer.id, linked_by="auto-create" if created else "manual")
    db.commit()
    db.refresh(email)

    logger.info("Customer from email", email_id=str(email.id), customer_id=str(customer.id), created=created)
    return {
        "customer_id": str(customer.id),
        "customer_number": customer.customer_number,
        "created": created,
        "email": email_to_dict(email),
    }
