"""
Mail bridge models: messages pulled from the shared mailbox and the
delta-sync cursor per mailbox.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, Text, Integer, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base
from .types import UUID


class LinkStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"
    UNIDENTIFIED = "unidentified"
    IGNORED = "ignored"


class IncomingEmail(Base):
    __tablename__ = "incoming_emails"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    graph_message_id = Column(String(500), unique=True, nullable=False)
    conversation_id = Column(String(500), nullable=True)

    subject = Column(String(1000), nullable=False, default="(Intet emne)")
    sender_email = Column(String(255), nullable=False)
    sender_name = Column(String(255), nullable=True)
    to_email = Column(String(255), nullable=True)
    cc = Column(JSON, default=list)
    reply_to = Column(String(255), nullable=True)

    body_html = Column(Text, nullable=True)
    body_text = Column(Text, nullable=True)
    body_preview = Column(String(255), nullable=True)
    attachment_urls = Column(JSON, default=list)
    has_attachments = Column(Boolean, default=False, nullable=False)

    is_read = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Linking
    link_status = Column(String(20), default=LinkStatus.PENDING.value, nullable=False)
    linked_by = Column(String(20), nullable=True)  # auto, manual, auto-create
    linked_at = Column(DateTime, nullable=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    customer_contact_id = Column(UUID(as_uuid=True), ForeignKey("customer_contacts.id", ondelete="SET NULL"), nullable=True)
    is_forwarded = Column(Boolean, default=False, nullable=False)
    original_sender_email = Column(String(255), nullable=True)
    original_sender_name = Column(String(255), nullable=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    customer = relationship("Customer")
    contact = relationship("CustomerContact")

    __table_args__ = (
        Index("idx_incoming_email_status", "link_status"),
        Index("idx_incoming_email_customer", "customer_id"),
        Index("idx_incoming_email_received", "received_at"),
    )


class GraphSyncState(Base):
    __tablename__ = "graph_sync_state"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mailbox = Column(String(255), unique=True, nullable=False)
    delta_link = Column(Text, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String(20), nullable=True)  # success, failed
    last_sync_error = Column(Text, nullable=True)
    emails_synced_total = Column(Integer, default=0, nullable=False)
