"""
Customer and contact routes.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import ConflictError, NotFoundError
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..db.models import Customer, CustomerContact, User
from ..services.customers import create_customer, find_customer_by_email, set_primary_contact

router = APIRouter()


class CustomerBase(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=200)
    contact_person: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = None
    mobile: Optional[str] = None
    website: Optional[str] = None
    vat_number: Optional[str] = None
    billing_address: Optional[str] = None
    billing_city: Optional[str] = None
    billing_postal_code: Optional[str] = None
    billing_country: Optional[str] = "Danmark"
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_country: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    website: Optional[str] = None
    vat_number: Optional[str] = None
    billing_address: Optional[str] = None
    billing_city: Optional[str] = None
    billing_postal_code: Optional[str] = None
    billing_country: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_country: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    title: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    is_primary: bool = False
    notes: Optional[str] = None


class ContactUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    title: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    is_primary: Optional[bool] = None
    notes: Optional[str] = None


def contact_to_dict(contact: CustomerContact) -> Dict[str, Any]:
    return {
        "id": str(contact.id),
        "customer_id": str(contact.customer_id),
        "name": contact.name,
        "title": contact.title,
        "email": contact.email,
        "phone": contact.phone,
        "mobile": contact.mobile,
        "is_primary": contact.is_primary,
        "notes": contact.notes,
    }


def customer_to_dict(customer: Customer, include_contacts: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(customer.id),
        "customer_number": customer.customer_number,
        "company_name": customer.company_name,
        "contact_person": customer.contact_person,
        "email": customer.email,
        "phone": customer.phone,
        "mobile": customer.mobile,
        "website": customer.website,
        "vat_number": customer.vat_number,
        "billing_address": customer.billing_address,
        "billing_city": customer.billing_city,
        "billing_postal_code": customer.billing_postal_code,
        "billing_country": customer.billing_country,
        "shipping_address": customer.shipping_address,
        "shipping_city": customer.shipping_city,
        "shipping_postal_code": customer.shipping_postal_code,
        "shipping_country": customer.shipping_country,
        "notes": customer.notes,
        "tags": customer.tags or [],
        "custom_fields": customer.custom_fields or {},
        "is_active": customer.is_active,
        "created_at": customer.created_at.isoformat(),
        "updated_at": customer.updated_at.isoformat() if customer.updated_at else None,
    }
    if include_contacts:
        data["contacts"] = [contact_to_dict(contact) for contact in customer.contacts]
    return data


def get_customer_or_404(db: Session, customer_id: UUID) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


def get_contact_or_404(db: Session, customer_id: UUID, contact_id: UUID) -> CustomerContact:
    contact = db.query(CustomerContact).filter(
        CustomerContact.id == contact_id,
        CustomerContact.customer_id == customer_id,
    ).first()
    if not contact:
        raise NotFoundError("Contact", contact_id)
    return contact


@router.get("")
async def list_customers(
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """List customers with search over company, contact person, email and number."""
    query = db.query(Customer)

    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Customer.company_name.ilike(term),
                Customer.contact_person.ilike(term),
                Customer.email.ilike(term),
                Customer.customer_number.ilike(term),
            )
        )

    customers, total = paginate_with_total(query.order_by(Customer.company_name), pagination)
    return {
        "customers": [customer_to_dict(customer) for customer in customers],
        **page_meta(total, len(customers), pagination),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer_endpoint(
    customer_data: CustomerCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    customer = create_customer(db, customer_data.model_dump(), current_user.id)
    db.commit()
    db.refresh(customer)
    return customer_to_dict(customer, include_contacts=True)


@router.get("/{customer_id}")
async def get_customer(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    customer = (
        db.query(Customer)
        .options(selectinload(Customer.contacts))
        .filter(Customer.id == customer_id)
        .first()
    )
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer_to_dict(customer, include_contacts=True)


@router.put("/{customer_id}")
async def update_customer(
    customer_id: UUID,
    customer_data: CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    customer = get_customer_or_404(db, customer_id)
    changes = customer_data.model_dump(exclude_unset=True)

    if changes.get("email"):
        changes["email"] = changes["email"].lower()
        if find_customer_by_email(db, changes["email"], exclude_id=customer.id):
            raise ConflictError("A customer with this email already exists", {"email": changes["email"]})

    for field, value in changes.items():
        setattr(customer, field, value)

    db.commit()
    db.refresh(customer)
    return customer_to_dict(customer, include_contacts=True)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    customer = get_customer_or_404(db, customer_id)
    db.delete(customer)
    db.commit()


@router.post("/{customer_id}/toggle-active")
async def toggle_customer_active(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    customer = get_customer_or_404(db, customer_id)
    customer.is_active = not customer.is_active
    db.commit()
    return {"id": str(customer.id), "is_active": customer.is_active}


# Contacts

@router.get("/{customer_id}/contacts")
async def list_contacts(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    get_customer_or_404(db, customer_id)
    contacts = (
        db.query(CustomerContact)
        .filter(CustomerContact.customer_id == customer_id)
        .order_by(CustomerContact.is_primary.desc(), CustomerContact.name)
        .all()
    )
    return [contact_to_dict(contact) for contact in contacts]


@router.post("/{customer_id}/contacts", status_code=status.HTTP_201_CREATED)
async def create_contact(
    customer_id: UUID,
    contact_data: ContactCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_customer_or_404(db, customer_id)
    data = contact_data.model_dump()
    is_primary = data.pop("is_primary")

    contact = CustomerContact(customer_id=customer_id, **data)
    db.add(contact)
    db.flush()
    if is_primary:
        set_primary_contact(db, contact)

    db.commit()
    db.refresh(contact)
    return contact_to_dict(contact)


@router.put("/{customer_id}/contacts/{contact_id}")
async def update_contact(
    customer_id: UUID,
    contact_id: UUID,
    contact_data: ContactUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    contact = get_contact_or_404(db, customer_id, contact_id)
    changes = contact_data.model_dump(exclude_unset=True)
    is_primary = changes.pop("is_primary", None)

    for field, value in changes.items():
        setattr(contact, field, value)
    if is_primary:
        set_primary_contact(db, contact)
    elif is_primary is False:
        contact.is_primary = False

    db.commit()
    db.refresh(contact)
    return contact_to_dict(contact)


@router.delete("/{customer_id}/contacts/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    customer_id: UUID,
    contact_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    contact = get_contact_or_404(db, customer_id, contact_id)
    db.delete(contact)
    db.commit()
