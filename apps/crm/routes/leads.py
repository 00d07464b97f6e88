"""
Sales pipeline routes: leads, status changes and the activity log.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import NotFoundError
from ..core.logging import get_logger
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..db.crm_models import Lead, LeadActivity, LeadSource, LeadStatus, LEAD_STATUS_LABELS
from ..db.models import User

logger = get_logger(__name__)
router = APIRouter()

SORTABLE_COLUMNS = {
    "created_at": Lead.created_at,
    "updated_at": Lead.updated_at,
    "company_name": Lead.company_name,
    "contact_person": Lead.contact_person,
    "value": Lead.value,
    "probability": Lead.probability,
    "expected_close_date": Lead.expected_close_date,
    "status": Lead.status,
}


class LeadCreate(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=200)
    contact_person: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    source: LeadSource = LeadSource.OTHER
    value: Optional[float] = Field(None, ge=0)
    probability: Optional[int] = Field(None, ge=0, le=100)
    expected_close_date: Optional[date] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    assigned_to: Optional[UUID] = None
    customer_id: Optional[UUID] = None


class LeadUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    source: Optional[LeadSource] = None
    value: Optional[float] = Field(None, ge=0)
    probability: Optional[int] = Field(None, ge=0, le=100)
    expected_close_date: Optional[date] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None
    assigned_to: Optional[UUID] = None
    customer_id: Optional[UUID] = None


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class ActivityCreate(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1)


def lead_to_dict(lead: Lead) -> Dict[str, Any]:
    return {
        "id": str(lead.id),
        "company_name": lead.company_name,
        "contact_person": lead.contact_person,
        "email": lead.email,
        "phone": lead.phone,
        "status": lead.status,
        "source": lead.source,
        "value": lead.value,
        "probability": lead.probability,
        "expected_close_date": lead.expected_close_date.isoformat() if lead.expected_close_date else None,
        "notes": lead.notes,
        "tags": lead.tags or [],
        "custom_fields": lead.custom_fields or {},
        "assigned_to": str(lead.assigned_to) if lead.assigned_to else None,
        "customer_id": str(lead.customer_id) if lead.customer_id else None,
        "created_at": lead.created_at.isoformat(),
        "updated_at": lead.updated_at.isoformat() if lead.updated_at else None,
    }


def activity_to_dict(activity: LeadActivity) -> Dict[str, Any]:
    return {
        "id": str(activity.id),
        "lead_id": str(activity.lead_id),
        "activity_type": activity.activity_type,
        "description": activity.description,
        "performed_by": str(activity.performed_by) if activity.performed_by else None,
        "created_at": activity.created_at.isoformat(),
    }


def get_lead_or_404(db: Session, lead_id: UUID) -> Lead:
    lead = db.query(Lead).filter(Lead.id == lead_id).first()
    if not lead:
        raise NotFoundError("Lead", lead_id)
    return lead


def log_lead_activity(db: Session, lead: Lead, activity_type: str, description: str, user_id: Optional[UUID]) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead.id,
        activity_type=activity_type,
        description=description,
        performed_by=user_id,
    )
    db.add(activity)
    return activity


@router.get("")
async def list_leads(
    search: Optional[str] = None,
    status: Optional[LeadStatus] = None,
    source: Optional[LeadSource] = None,
    assigned_to: Optional[UUID] = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """List leads with filtering, sorting and per status counts."""
    query = db.query(Lead)

    if status:
        query = query.filter(Lead.status == status.value)
    if source:
        query = query.filter(Lead.source == source.value)
    if assigned_to:
        query = query.filter(Lead.assigned_to == assigned_to)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Lead.company_name.ilike(term),
                Lead.contact_person.ilike(term),
                Lead.email.ilike(term),
            )
        )

    column = SORTABLE_COLUMNS.get(sort_by, Lead.created_at)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())

    leads, total = paginate_with_total(query, pagination)

    counts = dict(db.query(Lead.status, func.count(Lead.id)).group_by(Lead.status).all())
    stats = {lead_status.value: counts.get(lead_status.value, 0) for lead_status in LeadStatus}

    return {
        "leads": [lead_to_dict(lead) for lead in leads],
        **page_meta(total, len(leads), pagination),
        "stats": stats,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lead(
    lead_data: LeadCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    data = lead_data.model_dump()
    data["status"] = lead_data.status.value
    data["source"] = lead_data.source.value

    lead = Lead(**data, created_by=current_user.id)
    db.add(lead)
    db.flush()
    log_lead_activity(db, lead, "created", "Lead oprettet", current_user.id)
    db.commit()
    db.refresh(lead)

    logger.info("Lead created", lead_id=str(lead.id))
    return lead_to_dict(lead)


@router.get("/{lead_id}")
async def get_lead(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return lead_to_dict(get_lead_or_404(db, lead_id))


@router.put("/{lead_id}")
async def update_lead(
    lead_id: UUID,
    lead_data: LeadUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    lead = get_lead_or_404(db, lead_id)
    for field, value in lead_data.model_dump(exclude_unset=True).items():
        if isinstance(value, LeadSource):
            value = value.value
        setattr(lead, field, value)

    db.commit()
    db.refresh(lead)
    return lead_to_dict(lead)


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lead(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    lead = get_lead_or_404(db, lead_id)
    db.delete(lead)
    db.commit()


@router.patch("/{lead_id}/status")
async def update_lead_status(
    lead_id: UUID,
    status_data: LeadStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Move a lead through the pipeline. Setting the current status is a no-op."""
    lead = get_lead_or_404(db, lead_id)
    new_status = status_data.status

    if lead.status == new_status.value:
        return lead_to_dict(lead)

    old_label = LEAD_STATUS_LABELS[LeadStatus(lead.status)]
    lead.status = new_status.value
    log_lead_activity(
        db,
        lead,
        "status_change",
        f"Status ændret fra {old_label} til {LEAD_STATUS_LABELS[new_status]}",
        current_user.id,
    )
    db.commit()
    db.refresh(lead)
    return lead_to_dict(lead)


@router.get("/{lead_id}/activities")
async def list_lead_activities(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    lead = get_lead_or_404(db, lead_id)
    return [activity_to_dict(activity) for activity in lead.activities]


@router.post("/{lead_id}/activities", status_code=status.HTTP_201_CREATED)
async def add_lead_activity(
    lead_id: UUID,
    activity_data: ActivityCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    lead = get_lead_or_404(db, lead_id)
    activity = log_lead_activity(db, lead, activity_data.activity_type, activity_data.description, current_user.id)
    db.commit()
    db.refresh(activity)
    return activity_to_dict(activity)
