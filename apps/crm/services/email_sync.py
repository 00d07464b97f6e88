"""
Mail bridge sync.

Polls the CRM mailbox through Graph, stores new messages, links them to
customers and keeps the per-mailbox delta cursor. Used by the manual sync
endpoint; a scheduler can call run_email_sync the same way.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .email_linker import link_email
from ..core.errors import CRMError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.email_models import GraphSyncState, IncomingEmail, LinkStatus
from ..integrations.graph import GraphMailClient

logger = get_logger(__name__)

NO_SUBJECT = "(Intet emne)"


class EmailSyncResult(BaseModel):
    success: bool = False
    emails_fetched: int = 0
    emails_inserted: int = 0
    emails_skipped: int = 0
    emails_linked: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


def parse_graph_datetime(value: Optional[str]) -> datetime:
    """Graph timestamps are ISO 8601 UTC; stored naive in UTC."""
    if not value:
        return datetime.utcnow()
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _address(recipient: Optional[Dict[str, Any]]) -> Optional[str]:
    if not recipient:
        return None
    return (recipient.get("emailAddress") or {}).get("address")


def is_removed_entry(message: Dict[str, Any]) -> bool:
    """Delta tombstones for deleted or moved messages carry no mail content."""
    return "@removed" in message or not message.get("from")


def get_sync_state(db: Session, mailbox: str) -> GraphSyncState:
    state = db.query(GraphSyncState).filter(GraphSyncState.mailbox == mailbox).first()
    if state is None:
        state = GraphSyncState(mailbox=mailbox, emails_synced_total=0)
        db.add(state)
        db.flush()
    return state


def build_incoming_email(message: Dict[str, Any], mailbox: str) -> IncomingEmail:
    sender = (message.get("from") or {}).get("emailAddress") or {}
    body = message.get("body") or {}
    content_type = (body.get("contentType") or "").lower()
    reply_to = message.get("replyTo") or []

    attachments = [
        {"filename": a.get("name"), "content_type": a.get("contentType"), "size": a.get("size")}
        for a in message.get("attachments") or []
    ]

    return IncomingEmail(
        graph_message_id=message["id"],
        conversation_id=message.get("conversationId"),
        subject=message.get("subject") or NO_SUBJECT,
        sender_email=(sender.get("address") or "").lower(),
        sender_name=sender.get("name") or None,
        to_email=mailbox,
        cc=[addr for addr in (_address(r) for r in message.get("ccRecipients") or []) if addr],
        reply_to=_address(reply_to[0]) if reply_to else None,
        body_html=body.get("content") if content_type == "html" else None,
        body_text=body.get("content") if content_type == "text" else None,
        body_preview=(message.get("bodyPreview") or "")[:200] or None,
        attachment_urls=attachments,
        has_attachments=bool(message.get("hasAttachments")),
        is_read=bool(message.get("isRead")),
        received_at=parse_graph_datetime(message.get("receivedDateTime")),
        link_status=LinkStatus.PENDING.value,
    )


def _record_state(
    state: GraphSyncState,
    status: str,
    delta_link: Optional[str] = None,
    error: Optional[str] = None,
    inserted: int = 0,
) -> None:
    state.last_sync_at = datetime.utcnow()
    state.last_sync_status = status
    state.last_sync_error = error
    # Keep the old cursor unless a complete walk produced a new one
    if delta_link:
        state.delta_link = delta_link
    state.emails_synced_total = (state.emails_synced_total or 0) + inserted


async def run_email_sync(db: Session, client: GraphMailClient) -> EmailSyncResult:
    started = time.monotonic()
    result = EmailSyncResult()

    if not client.is_configured:
        result.errors.append("Microsoft Graph ikke konfigureret")
        return result

    mailbox = client.mailbox
    state = get_sync_state(db, mailbox)
    db.commit()

    logger.info("Starting email sync", mailbox=mailbox, has_existing_delta=bool(state.delta_link))

    try:
        messages, new_delta_link = await client.poll_inbox_full(state.delta_link, settings.GRAPH_MAX_PAGES_PER_SYNC)
    except Exception as e:
        error = e.message if isinstance(e, CRMError) else str(e) or type(e).__name__
        result.errors.append(error)
        _record_state(state, "failed", error=error)
        db.commit()
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.error("Email sync failed", mailbox=mailbox, error=error, exc_info=not isinstance(e, CRMError))
        return result

    result.emails_fetched = len(messages)

    for message in messages:
        message_id = message.get("id")
        try:
            if not message_id:
                raise ValueError("message without id")
            exists = db.query(IncomingEmail.id).filter(IncomingEmail.graph_message_id == message_id).first()
            if exists or is_removed_entry(message):
                result.emails_skipped += 1
                continue

            email = build_incoming_email(message, mailbox)
            db.add(email)
            db.flush()
            match = link_email(db, email)
            db.commit()
        except (ValueError, KeyError, CRMError, SQLAlchemyError) as e:
            db.rollback()
            result.errors.append(f"Message {message_id}: {e}")
            logger.error("Failed to process email", graph_message_id=message_id, error=str(e))
            continue

        result.emails_inserted += 1
        if match.customer_id:
            result.emails_linked += 1

    state = get_sync_state(db, mailbox)
    _record_state(state, "success", delta_link=new_delta_link, inserted=result.emails_inserted)
    db.commit()

    result.success = True
    result.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Email sync completed",
        mailbox=mailbox,
        fetched=result.emails_fetched,
        inserted=result.emails_inserted,
        skipped=result.emails_skipped,
        linked=result.emails_linked,
        errors=len(result.errors),
        duration_ms=result.duration_ms,
    )
    return result
