from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Customer, Machine, PaymentRecord, Rental, Vehicle
from services.errors import RentalValidationError


CHART_PERIODS = {"month", "quarter", "year"}


def _status_counts(db: Session, model, key_column, dealer_id: int) -> dict[str, int]:
    rows = db.execute(
        select(model.Status, func.count(key_column))
        .where(model.DealerID == dealer_id)
        .where(model.IsActive == True)  # noqa: E712
        .group_by(model.Status)
    ).all()
    return {status: int(count) for status, count in rows}


def dashboard_stats(db: Session, dealer_id: int) -> dict:
    active_rentals = db.execute(
        select(func.count(Rental.RentalID)).where(Rental.DealerID == dealer_id).where(Rental.Status == "active")
    ).scalar()
    customers, outstanding = db.execute(
        select(func.count(Customer.CustomerID), func.coalesce(func.sum(Customer.TotalOutstandingDue), 0))
        .where(Customer.DealerID == dealer_id)
        .where(Customer.IsActive == True)  # noqa: E712
    ).one()
    collected = db.execute(
        select(func.coalesce(func.sum(PaymentRecord.AmountPaid), 0)).where(PaymentRecord.DealerID == dealer_id)
    ).scalar()
    return {
        "machinesByStatus": _status_counts(db, Machine, Machine.MachineID, dealer_id),
        "vehiclesByStatus": _status_counts(db, Vehicle, Vehicle.VehicleID, dealer_id),
        "activeRentals": int(active_rentals or 0),
        "customers": int(customers or 0),
        "totalCollected": collected,
        "totalOutstanding": outstanding,
    }


def _equipment_name(rental: Rental) -> str | None:
    if rental.Machine is not None:
        return rental.Machine.MachineName
    if rental.Vehicle is not None:
        return rental.Vehicle.VehicleNumber
    return None


def recent_activity(db: Session, dealer_id: int, limit: int = 10) -> dict:
    limit = max(1, limit)
    rentals = db.execute(
        select(Rental)
        .options(selectinload(Rental.Customer), selectinload(Rental.Machine), selectinload(Rental.Vehicle))
        .where(Rental.DealerID == dealer_id)
        .order_by(Rental.RentedOn.desc(), Rental.RentalID.desc())
        .limit(limit)
    ).scalars().all()
    payments = db.execute(
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.Customer), selectinload(PaymentRecord.Rental))
        .where(PaymentRecord.DealerID == dealer_id)
        .order_by(PaymentRecord.PaymentDate.desc(), PaymentRecord.PaymentID.desc())
        .limit(limit)
    ).scalars().all()
    return {
        "recentRentals": [
            {
                "rentalID": rental.RentalID,
                "rentalNumber": rental.RentalNumber,
                "status": rental.Status,
                "rentedOn": rental.RentedOn,
                "rentalAmount": rental.RentalAmount,
                "customerName": rental.Customer.Name if rental.Customer else None,
                "equipment": _equipment_name(rental),
            }
            for rental in rentals
        ],
        "recentPayments": [
            {
                "paymentID": payment.PaymentID,
                "amountPaid": payment.AmountPaid,
                "paymentMethod": payment.PaymentMethod,
                "paymentDate": payment.PaymentDate,
                "customerName": payment.Customer.Name if payment.Customer else None,
                "rentalNumber": payment.Rental.RentalNumber if payment.Rental else None,
            }
            for payment in payments
        ],
    }


def _months_back(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    return moment.replace(year=year, month=month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def revenue_chart(db: Session, dealer_id: int, period: str = "month", now: datetime | None = None) -> list[dict]:
    """Collected payments bucketed per day for a month and per calendar month otherwise."""
    period = (period or "month").strip().lower()
    if period not in CHART_PERIODS:
        raise RentalValidationError(f"Period must be one of: {', '.join(sorted(CHART_PERIODS))}")
    now = now or datetime.now()
    if period == "month":
        start = now - timedelta(days=30)
        bucket_format = "%Y-%m-%d"
    else:
        start = _months_back(now, 3 if period == "quarter" else 12)
        bucket_format = "%Y-%m"

    rows = db.execute(
        select(PaymentRecord.PaymentDate, PaymentRecord.AmountPaid)
        .where(PaymentRecord.DealerID == dealer_id)
        .where(PaymentRecord.PaymentDate >= start)
        .where(PaymentRecord.PaymentDate <= now)
    ).all()

    # Bucketed here so the same code runs on every database dialect.
    buckets: dict[str, dict] = {}
    for paid_on, amount in rows:
        key = paid_on.strftime(bucket_format)
        bucket = buckets.setdefault(key, {"period": key, "totalRevenue": Decimal("0"), "count": 0})
        bucket["totalRevenue"] += Decimal(str(amount or 0))
        bucket["count"] += 1
    return [buckets[key] for key in sorted(buckets)]
