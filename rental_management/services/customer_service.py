from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Customer, Rental
from services.errors import ConflictError, NotFoundError


BUSINESS_TYPES = {"Construction", "Landscaping", "Agriculture", "Mining", "Transportation", "Other"}


def get_customer(db: Session, dealer_id: int, customer_id: int, with_history: bool = False) -> Customer:
    stmt = (
        select(Customer)
        .where(Customer.CustomerID == customer_id)
        .where(Customer.DealerID == dealer_id)
        .where(Customer.IsActive == True)  # noqa: E712
    )
    if with_history:
        stmt = stmt.options(selectinload(Customer.Rentals), selectinload(Customer.Payments))
    customer = db.execute(stmt).scalars().first()
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def list_customers(db: Session, dealer_id: int) -> list[Customer]:
    stmt = (
        select(Customer)
        .where(Customer.DealerID == dealer_id)
        .where(Customer.IsActive == True)  # noqa: E712
        .order_by(Customer.Name, Customer.CustomerID)
    )
    return list(db.execute(stmt).scalars().all())


def deactivate_customer(db: Session, customer: Customer) -> None:
    open_rental = db.execute(
        select(Rental.RentalID)
        .where(Rental.CustomerID == customer.CustomerID)
        .where(Rental.DealerID == customer.DealerID)
        .where(Rental.Status == "active")
    ).first()
    if open_rental is not None:
        raise ConflictError("Customer has an active rental and cannot be deleted.")
    customer.IsActive = False
    customer.UpdatedDate = datetime.now()


def serialize_customer(customer: Customer) -> dict:
    return {
        "customerID": customer.CustomerID,
        "name": customer.Name,
        "contactNumber": customer.ContactNumber,
        "email": customer.Email,
        "businessType": customer.BusinessType,
        "totalRentals": customer.TotalRentals,
        "totalOutstandingDue": customer.TotalOutstandingDue,
        "isActive": bool(customer.IsActive),
        "createdDate": customer.CreatedDate,
        "updatedDate": customer.UpdatedDate,
    }
