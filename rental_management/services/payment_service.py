from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased, selectinload

from models.rental_models import Customer, PaymentRecord, Rental
from services.audit_service import log_audit
from services.errors import NotFoundError, RentalValidationError


LOGGER = logging.getLogger("rental_management.payments")

PLACEHOLDER_METHOD = "pending"
PAYMENT_METHODS = {PLACEHOLDER_METHOD, "cash", "check", "credit_card", "bank_transfer", "online"}

_UPDATABLE_FIELDS = {
    "amountPaid": "AmountPaid",
    "outstandingDue": "OutstandingDue",
    "paymentMethod": "PaymentMethod",
    "paymentDate": "PaymentDate",
    "transactionReference": "TransactionReference",
    "notes": "Notes",
}


def to_money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError) as exc:
        raise RentalValidationError(f"{field} must be a number.") from exc
    if not amount.is_finite():
        raise RentalValidationError(f"{field} must be a number.")
    if amount < 0:
        raise RentalValidationError(f"{field} must not be negative.")
    return amount.quantize(Decimal("0.01"))


def _normalize_method(raw: str | None) -> str:
    method = (raw or "cash").strip().lower()
    if method not in PAYMENT_METHODS:
        raise RentalValidationError(f"Unknown payment method: {raw}")
    return method


def latest_entry_ids(dealer_id: int, customer_id: int | None = None, rental_id: int | None = None):
    """Select the newest ledger entry id of each rental.

    Entries are never rewritten; the newest entry of a rental states what is
    still owed on it, so balances are summed over these rows only.
    """
    entry = aliased(PaymentRecord)
    stmt = select(func.max(entry.PaymentID)).where(entry.DealerID == dealer_id)
    if customer_id is not None:
        stmt = stmt.where(entry.CustomerID == customer_id)
    if rental_id is not None:
        stmt = stmt.where(entry.RentalID == rental_id)
    return stmt.group_by(entry.RentalID)


def outstanding_balance_query(dealer_id: int, customer_id: int | None = None, rental_id: int | None = None):
    return (
        select(func.coalesce(func.sum(PaymentRecord.OutstandingDue), 0))
        .where(PaymentRecord.DealerID == dealer_id)
        .where(PaymentRecord.PaymentID.in_(latest_entry_ids(dealer_id, customer_id, rental_id)))
    )


def rental_balance(db: Session, dealer_id: int, rental_id: int) -> Decimal:
    total = db.execute(outstanding_balance_query(dealer_id, rental_id=rental_id)).scalar()
    return Decimal(str(total or 0))


def recalc_customer_outstanding(db: Session, dealer_id: int, customer_id: int) -> Decimal:
    """Rewrite the customer's cached balance from the newest entry of each of their rentals.

    The balance is a subquery of the UPDATE itself, so the read and the write
    are a single statement inside the caller's transaction.
    """
    db.flush()
    total_subquery = outstanding_balance_query(dealer_id, customer_id=customer_id).scalar_subquery()
    db.execute(
        update(Customer)
        .where(Customer.CustomerID == customer_id)
        .where(Customer.DealerID == dealer_id)
        .values(TotalOutstandingDue=total_subquery, UpdatedDate=datetime.now()),
        execution_options={"synchronize_session": False},
    )
    customer = db.get(Customer, customer_id)
    if customer is not None:
        db.expire(customer, ["TotalOutstandingDue", "UpdatedDate"])
    total = db.execute(
        select(Customer.TotalOutstandingDue).where(Customer.CustomerID == customer_id)
    ).scalar()
    return Decimal(str(total or 0))


def append_ledger_entry(
    db: Session,
    dealer_id: int,
    customer_id: int,
    rental_id: int,
    amount_paid: Decimal,
    outstanding_due: Decimal,
    payment_method: str,
    transaction_reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> PaymentRecord:
    now = datetime.now()
    payment = PaymentRecord(
        DealerID=dealer_id,
        CustomerID=customer_id,
        RentalID=rental_id,
        AmountPaid=amount_paid,
        OutstandingDue=outstanding_due,
        PaymentMethod=payment_method,
        TransactionReference=transaction_reference,
        Notes=notes,
        PaymentDate=payment_date or now,
        CreatedDate=now,
        UpdatedDate=now,
    )
    db.add(payment)
    db.flush()
    return payment


def get_payment(db: Session, dealer_id: int, payment_id: int) -> PaymentRecord:
    stmt = (
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.Customer), selectinload(PaymentRecord.Rental))
        .where(PaymentRecord.PaymentID == payment_id)
        .where(PaymentRecord.DealerID == dealer_id)
    )
    payment = db.execute(stmt).scalars().first()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def list_payments(db: Session, dealer_id: int, customer_id: int | None = None, rental_id: int | None = None) -> list[PaymentRecord]:
    stmt = (
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.Customer), selectinload(PaymentRecord.Rental))
        .where(PaymentRecord.DealerID == dealer_id)
    )
    if customer_id:
        stmt = stmt.where(PaymentRecord.CustomerID == customer_id)
    if rental_id:
        stmt = stmt.where(PaymentRecord.RentalID == rental_id)
    stmt = stmt.order_by(PaymentRecord.PaymentDate.desc(), PaymentRecord.PaymentID.desc())
    return list(db.execute(stmt).scalars().all())


def record_payment(
    db: Session,
    dealer_id: int,
    customer_id: int,
    rental_id: int,
    amount_paid: Any,
    outstanding_due: Any,
    payment_method: str | None = "cash",
    transaction_reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> PaymentRecord:
    paid = to_money(amount_paid, "amountPaid")
    due = to_money(outstanding_due, "outstandingDue")
    method = _normalize_method(payment_method)

    customer = db.execute(
        select(Customer).where(Customer.CustomerID == customer_id).where(Customer.DealerID == dealer_id)
    ).scalars().first()
    if not customer:
        raise NotFoundError("Customer not found")
    rental = db.execute(
        select(Rental).where(Rental.RentalID == rental_id).where(Rental.DealerID == dealer_id)
    ).scalars().first()
    if not rental:
        raise NotFoundError("Rental not found")
    if rental.CustomerID != customer.CustomerID:
        raise RentalValidationError("Rental does not belong to this customer.")

    try:
        payment = append_ledger_entry(
            db,
            dealer_id,
            customer.CustomerID,
            rental.RentalID,
            paid,
            due,
            method,
            transaction_reference=transaction_reference,
            notes=notes,
            payment_date=payment_date,
        )
        total = recalc_customer_outstanding(db, dealer_id, customer.CustomerID)
        log_audit(db, dealer_id, "Payment", payment.PaymentID, "RecordPayment", f"paid={paid} due={due} method={method}")
        db.commit()
    except Exception:
        db.rollback()
        LOGGER.error("Payment rollback dealer=%s customer=%s rental=%s", dealer_id, customer_id, rental_id, exc_info=True)
        raise

    LOGGER.info(
        "Payment recorded dealer=%s payment=%s customer=%s rental=%s paid=%s due=%s total_due=%s",
        dealer_id,
        payment.PaymentID,
        customer.CustomerID,
        rental.RentalID,
        paid,
        due,
        total,
    )
    return get_payment(db, dealer_id, payment.PaymentID)


def update_payment(db: Session, dealer_id: int, payment_id: int, changes: dict[str, Any]) -> PaymentRecord:
    payment = get_payment(db, dealer_id, payment_id)

    for field, value in changes.items():
        column = _UPDATABLE_FIELDS.get(field)
        if column is None:
            continue
        if column in {"AmountPaid", "OutstandingDue"}:
            value = to_money(value, field)
        elif column == "PaymentMethod":
            value = _normalize_method(value)
        elif column == "PaymentDate" and value is None:
            continue
        setattr(payment, column, value)
    payment.UpdatedDate = datetime.now()

    try:
        total = recalc_customer_outstanding(db, dealer_id, payment.CustomerID)
        log_audit(db, dealer_id, "Payment", payment.PaymentID, "UpdatePayment", f"fields={','.join(sorted(changes))}")
        db.commit()
    except Exception:
        db.rollback()
        LOGGER.error("Payment update rollback dealer=%s payment=%s", dealer_id, payment_id, exc_info=True)
        raise

    LOGGER.info("Payment updated dealer=%s payment=%s total_due=%s", dealer_id, payment_id, total)
    return get_payment(db, dealer_id, payment_id)


def delete_payment(db: Session, dealer_id: int, payment_id: int) -> Decimal:
    payment = get_payment(db, dealer_id, payment_id)
    customer_id = payment.CustomerID

    try:
        db.delete(payment)
        total = recalc_customer_outstanding(db, dealer_id, customer_id)
        log_audit(db, dealer_id, "Payment", payment_id, "DeletePayment", f"customer={customer_id}")
        db.commit()
    except Exception:
        db.rollback()
        LOGGER.error("Payment delete rollback dealer=%s payment=%s", dealer_id, payment_id, exc_info=True)
        raise

    LOGGER.info("Payment deleted dealer=%s payment=%s customer=%s total_due=%s", dealer_id, payment_id, customer_id, total)
    return total


def serialize_payment(payment: PaymentRecord) -> dict:
    return {
        "paymentID": payment.PaymentID,
        "customerID": payment.CustomerID,
        "rentalID": payment.RentalID,
        "amountPaid": payment.AmountPaid,
        "outstandingDue": payment.OutstandingDue,
        "paymentDate": payment.PaymentDate,
        "paymentMethod": payment.PaymentMethod,
        "transactionReference": payment.TransactionReference,
        "notes": payment.Notes,
        "createdDate": payment.CreatedDate,
        "updatedDate": payment.UpdatedDate,
        "customer": {
            "customerID": payment.Customer.CustomerID,
            "name": payment.Customer.Name,
            "contactNumber": payment.Customer.ContactNumber,
        } if payment.Customer else None,
        "rental": {
            "rentalID": payment.Rental.RentalID,
            "rentalNumber": payment.Rental.RentalNumber,
            "rentedOn": payment.Rental.RentedOn,
            "rentalAmount": payment.Rental.RentalAmount,
        } if payment.Rental else None,
    }
