from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import date, datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Alert, Machine, Rental, Vehicle
from services.errors import ConflictError, NotFoundError


LOGGER = logging.getLogger("rental_management.alerts")

ALERT_ACTIVE = "Active"
ALERT_ACKNOWLEDGED = "Acknowledged"
ALERT_RESOLVED = "Resolved"
ALERT_DISMISSED = "Dismissed"
# Open alerts block a duplicate of the same type for the same entity.
OPEN_STATES = {ALERT_ACTIVE, ALERT_ACKNOWLEDGED}
OVERDUE_RENTAL = "Overdue Rental"
EQUIPMENT_DAMAGE = "Equipment Damage"


def _overdue_grace_days() -> int:
    try:
        return max(0, int(os.environ.get("RENTAL_OVERDUE_GRACE_DAYS") or "0"))
    except ValueError:
        return 0


def generate_alert_number(dealer_id: int) -> str:
    timestamp = format(int(time.time() * 1000), "x").upper()
    random_part = secrets.token_hex(2).upper()
    return f"ALT-{str(dealer_id)[-4:]}-{timestamp}-{random_part}"


def _has_open_alert(db: Session, dealer_id: int, alert_type: str, entity_type: str, entity_id: int) -> bool:
    existing = db.execute(
        select(Alert.AlertID)
        .where(Alert.DealerID == dealer_id)
        .where(Alert.AlertType == alert_type)
        .where(Alert.EntityType == entity_type)
        .where(Alert.EntityID == entity_id)
        .where(Alert.Status.in_(OPEN_STATES))
    ).first()
    return existing is not None


def _equipment_label(rental: Rental) -> str:
    if rental.Machine is not None:
        return rental.Machine.MachineName
    if rental.Vehicle is not None:
        return rental.Vehicle.VehicleNumber
    return rental.RentalNumber


def generate_overdue_rental_alerts(db: Session, dealer_id: int, today: date | None = None) -> int:
    """Raise one alert per active rental whose equipment is past its expected return date."""
    current_day = today or date.today()
    cutoff = current_day - timedelta(days=_overdue_grace_days())

    stmt = (
        select(Rental)
        .options(selectinload(Rental.Customer), selectinload(Rental.Machine), selectinload(Rental.Vehicle))
        .outerjoin(Machine, Machine.MachineID == Rental.MachineID)
        .outerjoin(Vehicle, Vehicle.VehicleID == Rental.VehicleID)
        .where(Rental.DealerID == dealer_id)
        .where(Rental.Status == "active")
        .where(
            or_(
                Machine.ExpectedReturnDate < cutoff,
                Vehicle.ExpectedReturnDate < cutoff,
            )
        )
    )
    rentals = db.execute(stmt).scalars().all()

    created = 0
    for rental in rentals:
        if _has_open_alert(db, dealer_id, OVERDUE_RENTAL, "Rental", rental.RentalID):
            continue
        equipment = rental.Machine or rental.Vehicle
        days_overdue = (current_day - equipment.ExpectedReturnDate).days
        customer_name = rental.Customer.Name if rental.Customer else f"#{rental.CustomerID}"
        db.add(
            Alert(
                AlertNumber=generate_alert_number(dealer_id),
                DealerID=dealer_id,
                AlertType=OVERDUE_RENTAL,
                Priority="Medium",
                Title=f"Overdue Rental - {_equipment_label(rental)}",
                Message=f"Rental {rental.RentalNumber} is {days_overdue} days overdue. Customer: {customer_name}",
                EntityType="Rental",
                EntityID=rental.RentalID,
                Status=ALERT_ACTIVE,
                DueDate=current_day,
                CreatedAt=datetime.now(),
            )
        )
        created += 1

    db.commit()
    LOGGER.info("Overdue alerts generated dealer=%s created=%s", dealer_id, created)
    return created


def raise_damage_alert(db: Session, rental: Rental) -> Alert:
    kind = "Machine" if rental.MachineID else "Vehicle"
    customer_name = rental.Customer.Name if rental.Customer else f"#{rental.CustomerID}"
    alert = Alert(
        AlertNumber=generate_alert_number(rental.DealerID),
        DealerID=rental.DealerID,
        AlertType=EQUIPMENT_DAMAGE,
        Priority="High",
        Title=f"Damage Reported - {_equipment_label(rental)}",
        Message=f"{kind} returned {rental.ReturnCondition}. Rental {rental.RentalNumber}. Customer: {customer_name}",
        EntityType=kind,
        EntityID=rental.MachineID or rental.VehicleID,
        Status=ALERT_ACTIVE,
        DueDate=date.today(),
        CreatedAt=datetime.now(),
    )
    db.add(alert)
    db.commit()
    LOGGER.info("Damage alert dealer=%s rental=%s condition=%s", rental.DealerID, rental.RentalID, rental.ReturnCondition)
    return alert


def list_alerts(
    db: Session,
    dealer_id: int,
    status: str | None = ALERT_ACTIVE,
    alert_type: str | None = None,
    priority: str | None = None,
) -> list[Alert]:
    stmt = select(Alert).where(Alert.DealerID == dealer_id)
    if status:
        stmt = stmt.where(Alert.Status == status)
    if alert_type:
        stmt = stmt.where(Alert.AlertType == alert_type)
    if priority:
        stmt = stmt.where(Alert.Priority == priority)
    return list(db.execute(stmt.order_by(Alert.CreatedAt.desc(), Alert.AlertID.desc())).scalars().all())


def count_alerts(db: Session, dealer_id: int) -> dict:
    rows = db.execute(
        select(Alert.Status, Alert.Priority, func.count(Alert.AlertID))
        .where(Alert.DealerID == dealer_id)
        .group_by(Alert.Status, Alert.Priority)
        .order_by(Alert.Status, Alert.Priority)
    ).all()
    breakdown = [{"status": status, "priority": priority, "count": count} for status, priority, count in rows]
    return {
        "totalActive": sum(item["count"] for item in breakdown if item["status"] == ALERT_ACTIVE),
        "breakdown": breakdown,
    }


def _get_alert(db: Session, dealer_id: int, alert_id: int) -> Alert:
    alert = db.execute(
        select(Alert).where(Alert.AlertID == alert_id).where(Alert.DealerID == dealer_id)
    ).scalars().first()
    if not alert:
        raise NotFoundError("Alert not found")
    return alert


def acknowledge_alert(db: Session, dealer_id: int, alert_id: int, notes: str | None = None) -> Alert:
    alert = _get_alert(db, dealer_id, alert_id)
    if alert.Status != ALERT_ACTIVE:
        raise ConflictError(f"Alert is {alert.Status.lower()} and cannot be acknowledged")
    alert.Status = ALERT_ACKNOWLEDGED
    alert.AcknowledgedAt = datetime.now()
    alert.ActionNotes = notes or "Alert acknowledged"
    db.commit()
    return alert


def resolve_alert(db: Session, dealer_id: int, alert_id: int, notes: str | None = None) -> Alert:
    alert = _get_alert(db, dealer_id, alert_id)
    if alert.Status not in OPEN_STATES:
        raise ConflictError(f"Alert is already {alert.Status.lower()}")
    alert.Status = ALERT_RESOLVED
    alert.ResolvedAt = datetime.now()
    if notes:
        alert.ActionNotes = notes
    db.commit()
    return alert


def dismiss_alert(db: Session, dealer_id: int, alert_id: int) -> Alert:
    alert = _get_alert(db, dealer_id, alert_id)
    if alert.Status == ALERT_DISMISSED:
        raise ConflictError("Alert is already dismissed")
    alert.Status = ALERT_DISMISSED
    db.commit()
    return alert


def serialize_alert(alert: Alert) -> dict:
    return {
        "alertID": alert.AlertID,
        "alertNumber": alert.AlertNumber,
        "type": alert.AlertType,
        "priority": alert.Priority,
        "title": alert.Title,
        "message": alert.Message,
        "entityType": alert.EntityType,
        "entityID": alert.EntityID,
        "status": alert.Status,
        "dueDate": alert.DueDate,
        "createdAt": alert.CreatedAt,
        "acknowledgedAt": alert.AcknowledgedAt,
        "resolvedAt": alert.ResolvedAt,
        "actionNotes": alert.ActionNotes,
    }
