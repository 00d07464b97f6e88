"""
Customer numbering and creation shared by the customer and inbox routes.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.errors import ConflictError
from ..core.logging import get_logger
from ..db.models import Customer, CustomerContact

logger = get_logger(__name__)

CUSTOMER_NUMBER_PREFIX = "C"


def generate_customer_number(db: Session) -> str:
    """Next C000001 style number."""
    numbers = db.query(Customer.customer_number).filter(
        Customer.customer_number.like(f"{CUSTOMER_NUMBER_PREFIX}%")
    ).all()
    last = 0
    for (number,) in numbers:
        suffix = number[len(CUSTOMER_NUMBER_PREFIX):]
        if suffix.isdigit():
            last = max(last, int(suffix))
    return f"{CUSTOMER_NUMBER_PREFIX}{last + 1:06d}"


def find_customer_by_email(db: Session, email: str, exclude_id: Optional[UUID] = None) -> Optional[Customer]:
    query = db.query(Customer).filter(func.lower(Customer.email) == email.lower())
    if exclude_id:
        query = query.filter(Customer.id != exclude_id)
    return query.first()


def create_customer(db: Session, data: Dict[str, Any], user_id: Optional[UUID] = None) -> Customer:
    if find_customer_by_email(db, data["email"]):
        raise ConflictError("A customer with this email already exists", {"email": data["email"]})

    customer = Customer(**data, customer_number=generate_customer_number(db), created_by=user_id)
    customer.email = customer.email.lower()
    db.add(customer)
    db.flush()

    logger.info("Customer created", customer_id=str(customer.id), customer_number=customer.customer_number)
    return customer


def set_primary_contact(db: Session, contact: CustomerContact) -> None:
    """Only one primary contact per customer."""
    db.query(CustomerContact).filter(
        CustomerContact.customer_id == contact.customer_id,
        CustomerContact.id != contact.id,
        CustomerContact.is_primary.is_(True),
    ).update({CustomerContact.is_primary: False}, synchronize_session="fetch")
    contact.is_primary = True
