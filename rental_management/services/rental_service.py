from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Customer, Machine, Rental, Vehicle
from services.audit_service import log_audit
from services.equipment_service import AVAILABLE, RENTED, equipment_id, equipment_kind, get_equipment
from services.errors import ConflictError, NotFoundError, RentalValidationError
from services.payment_service import PLACEHOLDER_METHOD, append_ledger_entry, recalc_customer_outstanding, serialize_payment, to_money


LOGGER = logging.getLogger("rental_management.rentals")

ACTIVE = "active"
COMPLETED = "completed"
OVERDUE = "overdue"
CANCELLED = "cancelled"
RENTAL_STATES = {ACTIVE, COMPLETED, OVERDUE, CANCELLED}
RETURN_CONDITIONS = {"good", "damaged", "broken"}


def generate_rental_number(db: Session, dealer_id: int, prefix: str = "RNT") -> str:
    token = (prefix or "RNT").upper()
    last = db.execute(
        select(Rental)
        .where(Rental.DealerID == dealer_id)
        .where(Rental.RentalNumber.like(f"{token}-%"))
        .order_by(Rental.RentalID.desc())
    ).scalars().first()
    next_number = 1
    if last and last.RentalNumber:
        raw = last.RentalNumber.replace(f"{token}-", "")
        try:
            next_number = int(raw) + 1
        except ValueError:
            next_number = 1
    return f"{token}-{next_number:04d}"


def get_rental(db: Session, dealer_id: int, rental_id: int) -> Rental:
    stmt = (
        select(Rental)
        .options(
            selectinload(Rental.Customer),
            selectinload(Rental.Machine),
            selectinload(Rental.Vehicle),
            selectinload(Rental.Payments),
        )
        .where(Rental.RentalID == rental_id)
        .where(Rental.DealerID == dealer_id)
    )
    rental = db.execute(stmt).scalars().first()
    if not rental:
        raise NotFoundError("Rental not found")
    return rental


def list_rentals(db: Session, dealer_id: int, status: str | None = None, customer_id: int | None = None) -> list[Rental]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.Customer), selectinload(Rental.Machine), selectinload(Rental.Vehicle))
        .where(Rental.DealerID == dealer_id)
    )
    if status:
        if status not in RENTAL_STATES:
            raise RentalValidationError(f"Unknown rental status: {status}")
        stmt = stmt.where(Rental.Status == status)
    if customer_id:
        stmt = stmt.where(Rental.CustomerID == customer_id)
    return list(db.execute(stmt.order_by(Rental.RentedOn.desc(), Rental.RentalID.desc())).scalars().all())


def rental_equipment(rental: Rental) -> Machine | Vehicle | None:
    return rental.Machine if rental.MachineID else rental.Vehicle


def _equipment_model_and_key(rental: Rental):
    if rental.MachineID:
        return Machine, Machine.MachineID, rental.MachineID
    return Vehicle, Vehicle.VehicleID, rental.VehicleID


def open_rental(
    db: Session,
    dealer_id: int,
    customer_id: int,
    kind: str,
    item_id: int,
    rental_amount: Any,
    security_deposit: Any = 0,
    expected_return_date: date | None = None,
    notes: str | None = None,
) -> Rental:
    """Rent a machine or vehicle to a customer.

    Inserts the rental, flips the equipment to rented, bumps the customer's
    rental counter and writes the opening ledger entry (nothing paid, amount
    plus deposit outstanding) in one transaction. The flip is a conditional
    UPDATE on ``Status == available``; when a concurrent caller won it first
    the whole transaction is rolled back and ``ConflictError`` is raised.
    """
    amount = to_money(rental_amount, "rentalAmount")
    deposit = to_money(security_deposit, "securityDeposit")

    customer = db.execute(
        select(Customer)
        .where(Customer.CustomerID == customer_id)
        .where(Customer.DealerID == dealer_id)
        .where(Customer.IsActive == True)  # noqa: E712
    ).scalars().first()
    if not customer:
        raise NotFoundError("Customer not found")

    equipment = get_equipment(db, dealer_id, kind, item_id)
    if equipment.Status != AVAILABLE:
        LOGGER.warning(
            "Open rejected dealer=%s %s=%s status=%s",
            dealer_id,
            equipment_kind(equipment),
            item_id,
            equipment.Status,
        )
        raise ConflictError(f"{equipment_kind(equipment).capitalize()} is not available for rental")

    now = datetime.now()
    rental = Rental(
        DealerID=dealer_id,
        CustomerID=customer.CustomerID,
        RentalNumber=generate_rental_number(db, dealer_id),
        RentedOn=now,
        RentalAmount=amount,
        SecurityDeposit=deposit,
        Notes=notes,
        Status=ACTIVE,
        CreatedDate=now,
        UpdatedDate=now,
    )
    if isinstance(equipment, Machine):
        rental.MachineID = equipment.MachineID
        model, key_column = Machine, Machine.MachineID
    else:
        rental.VehicleID = equipment.VehicleID
        model, key_column = Vehicle, Vehicle.VehicleID

    try:
        db.add(rental)
        db.flush()

        claimed = db.execute(
            update(model)
            .where(key_column == equipment_id(equipment))
            .where(model.DealerID == dealer_id)
            .where(model.Status == AVAILABLE)
            .values(
                Status=RENTED,
                CurrentRentalID=rental.RentalID,
                ExpectedReturnDate=expected_return_date,
                UpdatedDate=now,
            )
        )
        if claimed.rowcount != 1:
            raise ConflictError(f"{equipment_kind(equipment).capitalize()} is not available for rental")

        db.execute(
            update(Customer)
            .where(Customer.CustomerID == customer.CustomerID)
            .values(TotalRentals=Customer.TotalRentals + 1, UpdatedDate=now)
        )
        append_ledger_entry(
            db,
            dealer_id,
            customer.CustomerID,
            rental.RentalID,
            Decimal("0.00"),
            amount + deposit,
            PLACEHOLDER_METHOD,
            notes="Opening balance",
            payment_date=now,
        )
        recalc_customer_outstanding(db, dealer_id, customer.CustomerID)
        log_audit(
            db,
            dealer_id,
            "Rental",
            rental.RentalID,
            "OpenRental",
            f"{equipment_kind(equipment)}={equipment_id(equipment)} customer={customer.CustomerID} amount={amount} deposit={deposit}",
        )
        db.commit()
    except ConflictError:
        db.rollback()
        LOGGER.warning("Open lost race dealer=%s %s=%s", dealer_id, equipment_kind(equipment), item_id)
        raise
    except IntegrityError as exc:
        db.rollback()
        LOGGER.warning("Open hit duplicate rental number dealer=%s %s=%s", dealer_id, equipment_kind(equipment), item_id)
        raise ConflictError("Another rental was opened at the same time; retry.") from exc
    except Exception:
        db.rollback()
        LOGGER.error("Open rollback dealer=%s customer=%s %s=%s", dealer_id, customer_id, kind, item_id, exc_info=True)
        raise

    LOGGER.info(
        "Rental opened dealer=%s rental=%s %s=%s customer=%s due=%s",
        dealer_id,
        rental.RentalID,
        equipment_kind(equipment),
        item_id,
        customer.CustomerID,
        amount + deposit,
    )
    db.refresh(equipment)
    db.refresh(customer)
    return get_rental(db, dealer_id, rental.RentalID)


def _release_equipment(db: Session, rental: Rental, now: datetime) -> int:
    model, key_column, key = _equipment_model_and_key(rental)
    result = db.execute(
        update(model)
        .where(key_column == key)
        .where(model.DealerID == rental.DealerID)
        .where(model.CurrentRentalID == rental.RentalID)
        .values(Status=AVAILABLE, CurrentRentalID=None, ExpectedReturnDate=None, UpdatedDate=now)
    )
    return result.rowcount


def _claim_rental_transition(db: Session, rental: Rental, expected_status: str, values: dict) -> None:
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.DealerID == rental.DealerID)
        .where(Rental.Status == expected_status)
        .values(**values)
    )
    if result.rowcount != 1:
        raise ConflictError("Rental changed while it was being updated; reload and retry.")


def close_rental(
    db: Session,
    dealer_id: int,
    rental_id: int,
    return_condition: str,
    notes: str | None = None,
) -> Rental:
    condition = (return_condition or "").strip().lower()
    if condition not in RETURN_CONDITIONS:
        raise RentalValidationError(f"Return condition must be one of: {', '.join(sorted(RETURN_CONDITIONS))}")

    rental = get_rental(db, dealer_id, rental_id)
    if rental.Status != ACTIVE:
        LOGGER.warning("Close rejected dealer=%s rental=%s status=%s", dealer_id, rental_id, rental.Status)
        raise ConflictError("Rental is not active")

    now = datetime.now()
    values = {"Status": COMPLETED, "ReturnedOn": now, "ReturnCondition": condition, "UpdatedDate": now}
    if notes:
        values["Notes"] = (rental.Notes + "\n" if rental.Notes else "") + notes
    try:
        _claim_rental_transition(db, rental, ACTIVE, values)
        released = _release_equipment(db, rental, now)
        log_audit(db, dealer_id, "Rental", rental.RentalID, "CloseRental", f"condition={condition} released={released}")
        db.commit()
    except ConflictError:
        db.rollback()
        LOGGER.warning("Close lost race dealer=%s rental=%s", dealer_id, rental_id)
        raise
    except Exception:
        db.rollback()
        LOGGER.error("Close rollback dealer=%s rental=%s", dealer_id, rental_id, exc_info=True)
        raise

    if not released:
        LOGGER.warning("Close found equipment not linked dealer=%s rental=%s", dealer_id, rental_id)
    LOGGER.info("Rental closed dealer=%s rental=%s condition=%s", dealer_id, rental_id, condition)
    db.refresh(rental)
    equipment = rental_equipment(rental)
    if equipment is not None:
        db.refresh(equipment)
    return rental


def cancel_rental(db: Session, dealer_id: int, rental_id: int) -> Rental:
    """Void a rental. Its ledger entries are kept untouched."""
    rental = get_rental(db, dealer_id, rental_id)
    if rental.Status == CANCELLED:
        raise ConflictError("Rental is already cancelled")

    previous_status = rental.Status
    was_active = previous_status == ACTIVE
    now = datetime.now()
    released = 0
    try:
        _claim_rental_transition(db, rental, previous_status, {"Status": CANCELLED, "UpdatedDate": now})
        if was_active:
            released = _release_equipment(db, rental, now)
        log_audit(db, dealer_id, "Rental", rental.RentalID, "CancelRental", f"wasActive={was_active} released={released}")
        db.commit()
    except ConflictError:
        db.rollback()
        LOGGER.warning("Cancel lost race dealer=%s rental=%s", dealer_id, rental_id)
        raise
    except Exception:
        db.rollback()
        LOGGER.error("Cancel rollback dealer=%s rental=%s", dealer_id, rental_id, exc_info=True)
        raise

    LOGGER.info("Rental cancelled dealer=%s rental=%s was_active=%s", dealer_id, rental_id, was_active)
    db.refresh(rental)
    equipment = rental_equipment(rental)
    if equipment is not None:
        db.refresh(equipment)
    return rental


def serialize_rental(rental: Rental, include_payments: bool = False) -> dict:
    equipment = rental_equipment(rental)
    payload = {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "machineID": rental.MachineID,
        "vehicleID": rental.VehicleID,
        "equipmentType": "machine" if rental.MachineID else "vehicle",
        "rentedOn": rental.RentedOn,
        "returnedOn": rental.ReturnedOn,
        "returnCondition": rental.ReturnCondition,
        "rentalAmount": rental.RentalAmount,
        "securityDeposit": rental.SecurityDeposit,
        "notes": rental.Notes,
        "status": rental.Status,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "customer": {
            "customerID": rental.Customer.CustomerID,
            "name": rental.Customer.Name,
            "contactNumber": rental.Customer.ContactNumber,
        } if rental.Customer else None,
        "equipment": {
            "id": equipment_id(equipment),
            "name": equipment.MachineName if isinstance(equipment, Machine) else equipment.VehicleNumber,
            "type": equipment.MachineType if isinstance(equipment, Machine) else equipment.VehicleType,
            "model": equipment.Model,
            "status": equipment.Status,
            "expectedReturnDate": equipment.ExpectedReturnDate,
        } if equipment else None,
    }
    if include_payments:
        payload["payments"] = [serialize_payment(payment) for payment in rental.Payments]
    return payload
