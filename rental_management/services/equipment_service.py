from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.rental_models import Machine, Vehicle
from services.errors import ConflictError, NotFoundError, RentalValidationError


LOGGER = logging.getLogger("rental_management.equipment")


AVAILABLE = "available"
RESERVED = "reserved"
RENTED = "rented"
UNDER_MAINTENANCE = "under_maintenance"

EQUIPMENT_STATES = {AVAILABLE, RESERVED, RENTED, UNDER_MAINTENANCE}
# Targets reachable by a direct edit; rented is owned by the rental lifecycle.
ADMIN_STATES = {AVAILABLE, RESERVED, UNDER_MAINTENANCE}

MACHINE_TYPES = {
    "Bulldozer",
    "Excavator",
    "Loader",
    "Crane",
    "Grader",
    "Dump Truck",
    "Forklift",
    "Backhoe",
    "Skid Steer",
    "Other",
}
VEHICLE_TYPES = MACHINE_TYPES | {"Car", "Truck", "Van", "SUV"}
VEHICLE_CONDITIONS = {"good", "damaged", "under_repair", "needs_inspection"}

EQUIPMENT_MODELS = {
    "machine": Machine,
    "vehicle": Vehicle,
}


def equipment_id(equipment: Machine | Vehicle) -> int:
    if isinstance(equipment, Machine):
        return equipment.MachineID
    return equipment.VehicleID


def equipment_kind(equipment: Machine | Vehicle) -> str:
    return "machine" if isinstance(equipment, Machine) else "vehicle"


def _primary_key_column(model):
    return model.MachineID if model is Machine else model.VehicleID


def get_equipment(db: Session, dealer_id: int, kind: str, item_id: int, include_inactive: bool = False) -> Machine | Vehicle:
    model = EQUIPMENT_MODELS.get((kind or "").strip().lower())
    if model is None:
        raise RentalValidationError(f"Unknown equipment type: {kind}")
    stmt = (
        select(model)
        .where(_primary_key_column(model) == item_id)
        .where(model.DealerID == dealer_id)
    )
    if not include_inactive:
        stmt = stmt.where(model.IsActive == True)  # noqa: E712
    equipment = db.execute(stmt).scalars().first()
    if not equipment:
        raise NotFoundError(f"{model.__name__} not found")
    return equipment


def list_equipment(db: Session, dealer_id: int, kind: str, status: str | None = None) -> list:
    model = EQUIPMENT_MODELS[kind]
    stmt = select(model).where(model.DealerID == dealer_id).where(model.IsActive == True)  # noqa: E712
    if status:
        stmt = stmt.where(model.Status == status)
    stmt = stmt.order_by(model.CreatedDate.desc(), _primary_key_column(model).desc())
    return list(db.execute(stmt).scalars().all())


def _conditional_equipment_write(db: Session, equipment: Machine | Vehicle, guard, values: dict) -> None:
    model = type(equipment)
    result = db.execute(
        update(model)
        .where(_primary_key_column(model) == equipment_id(equipment))
        .where(model.DealerID == equipment.DealerID)
        .where(guard)
        .values(**values)
    )
    if result.rowcount != 1:
        LOGGER.warning(
            "Equipment edit lost race dealer=%s %s=%s",
            equipment.DealerID,
            equipment_kind(equipment),
            equipment_id(equipment),
        )
        raise ConflictError("Equipment changed while it was being edited; reload and retry.")
    db.refresh(equipment)


def apply_admin_status_change(db: Session, equipment: Machine | Vehicle, target_status: str) -> None:
    """Move equipment between available, reserved and under_maintenance.

    Persisted equipment is updated with a write guarded on the status that was
    read, so a rental opened in the meantime turns the edit into a conflict.
    """
    target = (target_status or "").strip().lower()
    current = equipment.Status or AVAILABLE
    if target not in EQUIPMENT_STATES:
        raise RentalValidationError(f"Unknown equipment status: {target_status}")
    if target == current:
        return
    if current == RENTED:
        raise ConflictError(f"Equipment is rented; status cannot change to {target} until the rental is closed.")
    if target not in ADMIN_STATES:
        raise ConflictError("Equipment can only become rented by opening a rental.")
    if equipment_id(equipment) is None:
        equipment.Status = target
        return
    model = type(equipment)
    _conditional_equipment_write(
        db,
        equipment,
        model.Status == current,
        {"Status": target, "UpdatedDate": datetime.now()},
    )


def deactivate_equipment(db: Session, equipment: Machine | Vehicle) -> None:
    if equipment.Status == RENTED:
        raise ConflictError("Equipment with an active rental cannot be deleted.")
    model = type(equipment)
    _conditional_equipment_write(
        db,
        equipment,
        (model.Status != RENTED) & model.CurrentRentalID.is_(None),
        {"IsActive": False, "UpdatedDate": datetime.now()},
    )


def generate_vehicle_number(dealer_id: int, vehicle_type: str) -> str:
    timestamp = format(int(time.time() * 1000), "x").upper()
    random_part = secrets.token_hex(2).upper()
    dealer_prefix = str(dealer_id)[-4:].upper()
    type_prefix = (vehicle_type or "VEH")[:3].upper()
    return f"{type_prefix}-{dealer_prefix}-{timestamp}-{random_part}"


def serialize_machine(machine: Machine) -> dict:
    return {
        "machineID": machine.MachineID,
        "machineName": machine.MachineName,
        "machineType": machine.MachineType,
        "model": machine.Model,
        "serialNumber": machine.SerialNumber,
        "year": machine.Year,
        "dailyRate": machine.DailyRate,
        "status": machine.Status,
        "currentRentalID": machine.CurrentRentalID,
        "expectedReturnDate": machine.ExpectedReturnDate,
        "isActive": bool(machine.IsActive),
        "createdDate": machine.CreatedDate,
        "updatedDate": machine.UpdatedDate,
    }


def serialize_vehicle(vehicle: Vehicle) -> dict:
    return {
        "vehicleID": vehicle.VehicleID,
        "vehicleNumber": vehicle.VehicleNumber,
        "type": vehicle.VehicleType,
        "model": vehicle.Model,
        "manufacturer": vehicle.Manufacturer,
        "year": vehicle.Year,
        "serialNumber": vehicle.SerialNumber,
        "condition": vehicle.Condition,
        "dailyRate": vehicle.DailyRate,
        "status": vehicle.Status,
        "currentRentalID": vehicle.CurrentRentalID,
        "expectedReturnDate": vehicle.ExpectedReturnDate,
        "isActive": bool(vehicle.IsActive),
        "createdDate": vehicle.CreatedDate,
        "updatedDate": vehicle.UpdatedDate,
    }

