from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Customer, Machine, Rental, Vehicle
from services.customer_service import serialize_customer
from services.equipment_service import serialize_machine, serialize_vehicle
from services.errors import RentalValidationError
from services.rental_service import serialize_rental


MIN_QUERY_LENGTH = 2
SEARCH_KINDS = {"customers", "machines", "vehicles", "rentals"}
SUGGESTION_LIMIT = 15


def _pattern(query: str) -> str:
    escaped = query.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _matches(pattern: str, *columns):
    return or_(*[column.ilike(pattern, escape="\\") for column in columns])


def _find_customers(db: Session, dealer_id: int, pattern: str, limit: int) -> list[Customer]:
    stmt = (
        select(Customer)
        .where(Customer.DealerID == dealer_id)
        .where(Customer.IsActive == True)  # noqa: E712
        .where(_matches(pattern, Customer.Name, Customer.Email, Customer.ContactNumber, Customer.BusinessType))
        .order_by(Customer.Name, Customer.CustomerID)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def _find_machines(db: Session, dealer_id: int, pattern: str, limit: int) -> list[Machine]:
    stmt = (
        select(Machine)
        .where(Machine.DealerID == dealer_id)
        .where(Machine.IsActive == True)  # noqa: E712
        .where(_matches(pattern, Machine.MachineName, Machine.MachineType, Machine.Model, Machine.SerialNumber))
        .order_by(Machine.MachineName, Machine.MachineID)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def _find_vehicles(db: Session, dealer_id: int, pattern: str, limit: int) -> list[Vehicle]:
    stmt = (
        select(Vehicle)
        .where(Vehicle.DealerID == dealer_id)
        .where(Vehicle.IsActive == True)  # noqa: E712
        .where(
            _matches(
                pattern,
                Vehicle.VehicleNumber,
                Vehicle.VehicleType,
                Vehicle.Model,
                Vehicle.Manufacturer,
                Vehicle.SerialNumber,
            )
        )
        .order_by(Vehicle.VehicleNumber, Vehicle.VehicleID)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def _find_rentals(db: Session, dealer_id: int, pattern: str, limit: int) -> list[Rental]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.Customer), selectinload(Rental.Machine), selectinload(Rental.Vehicle))
        .where(Rental.DealerID == dealer_id)
        .where(_matches(pattern, Rental.RentalNumber, Rental.Status))
        .order_by(Rental.RentedOn.desc(), Rental.RentalID.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def search(db: Session, dealer_id: int, query: str | None, kind: str | None = None, limit: int = 10) -> dict:
    """Case-insensitive substring search over the dealer's customers, equipment and rentals."""
    text = (query or "").strip()
    if len(text) < MIN_QUERY_LENGTH:
        raise RentalValidationError(f"Search query must be at least {MIN_QUERY_LENGTH} characters long")
    if kind and kind not in SEARCH_KINDS:
        raise RentalValidationError(f"Unknown search type: {kind}")

    pattern = _pattern(text)
    limit = max(1, limit)
    results = {name: [] for name in sorted(SEARCH_KINDS)}
    if not kind or kind == "customers":
        results["customers"] = [serialize_customer(row) for row in _find_customers(db, dealer_id, pattern, limit)]
    if not kind or kind == "machines":
        results["machines"] = [serialize_machine(row) for row in _find_machines(db, dealer_id, pattern, limit)]
    if not kind or kind == "vehicles":
        results["vehicles"] = [serialize_vehicle(row) for row in _find_vehicles(db, dealer_id, pattern, limit)]
    if not kind or kind == "rentals":
        results["rentals"] = [serialize_rental(row) for row in _find_rentals(db, dealer_id, pattern, limit)]

    return {
        "query": text,
        "totalResults": sum(len(rows) for rows in results.values()),
        "data": results,
    }


def suggestions(db: Session, dealer_id: int, query: str | None) -> list[dict]:
    text = (query or "").strip()
    if not text:
        return []
    pattern = _pattern(text)

    found: list[dict] = []
    for customer in _find_customers(db, dealer_id, pattern, 5):
        found.append({"type": "customer", "id": customer.CustomerID, "text": customer.Name, "category": "Customers"})
    for machine in _find_machines(db, dealer_id, pattern, 5):
        found.append(
            {
                "type": "machine",
                "id": machine.MachineID,
                "text": f"{machine.MachineName} - {machine.MachineType} {machine.Model}",
                "category": "Machines",
            }
        )
    for vehicle in _find_vehicles(db, dealer_id, pattern, 5):
        found.append(
            {
                "type": "vehicle",
                "id": vehicle.VehicleID,
                "text": f"{vehicle.VehicleNumber} - {vehicle.VehicleType} {vehicle.Model}",
                "category": "Vehicles",
            }
        )
    for rental in _find_rentals(db, dealer_id, pattern, 5):
        customer_name = rental.Customer.Name if rental.Customer else f"#{rental.CustomerID}"
        found.append(
            {"type": "rental", "id": rental.RentalID, "text": f"{rental.RentalNumber} - {customer_name}", "category": "Rentals"}
        )
    return found[:SUGGESTION_LIMIT]
