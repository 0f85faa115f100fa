import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

from db.deps import get_rental_db
from models.rental_models import Customer, Dealer, Machine, Rental, Vehicle
from schemas.alerts import AlertActionRequest
from schemas.auth import AuthLoginRequest, DealerRegisterRequest
from schemas.customers import CustomerUpsert
from schemas.equipment import MachineUpsert, VehicleUpsert
from schemas.payments import CreatePaymentDto, UpdatePaymentDto
from schemas.rentals import CreateRentalDto, ReturnRequest
from schemas.settings import PasswordChangeRequest, ProfileUpdateRequest
from services.alert_service import (
    ALERT_ACTIVE,
    acknowledge_alert,
    count_alerts,
    dismiss_alert,
    generate_overdue_rental_alerts,
    list_alerts,
    raise_damage_alert,
    resolve_alert,
    serialize_alert,
)
from services.audit_service import list_audit_entries, log_audit
from services.customer_service import BUSINESS_TYPES, deactivate_customer, get_customer, list_customers, serialize_customer
from services.dashboard_service import dashboard_stats, recent_activity, revenue_chart
from services.dealer_service import (
    change_password,
    create_dealer,
    get_dealer_by_email,
    serialize_dealer,
    update_dealer_profile,
    verify_password,
)
from services.equipment_service import (
    AVAILABLE,
    MACHINE_TYPES,
    VEHICLE_CONDITIONS,
    VEHICLE_TYPES,
    apply_admin_status_change,
    deactivate_equipment,
    generate_vehicle_number,
    get_equipment,
    list_equipment,
    serialize_machine,
    serialize_vehicle,
)
from services.errors import ConflictError, NotFoundError, RentalError
from services.payment_service import (
    delete_payment,
    get_payment,
    list_payments,
    record_payment,
    serialize_payment,
    update_payment,
)
from services.rental_service import (
    cancel_rental,
    close_rental,
    get_rental,
    list_rentals,
    open_rental,
    serialize_rental,
)
from services.search_service import search, suggestions
from services.user_access_service import create_session, get_session, remove_session


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if _env_flag("RENTAL_DB_CREATE_SCHEMA"):
        from db.session import init_schema

        init_schema()
    yield


app = FastAPI(title="Equipment Rental Management", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
_APP_SESSION_SECRET = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
if len(_APP_SESSION_SECRET) >= 32:
    app.add_middleware(
        SessionMiddleware,
        secret_key=_APP_SESSION_SECRET,
        session_cookie="rental_management_session",
        same_site="lax",
        https_only=False,
    )

AUTH_LOGGER = logging.getLogger("rental_management.auth")
DAMAGE_CONDITIONS = {"damaged", "broken"}

_MACHINE_FIELDS = {
    "machineName": "MachineName",
    "machineType": "MachineType",
    "model": "Model",
    "serialNumber": "SerialNumber",
    "year": "Year",
    "dailyRate": "DailyRate",
}
_VEHICLE_FIELDS = {
    "vehicleNumber": "VehicleNumber",
    "type": "VehicleType",
    "model": "Model",
    "manufacturer": "Manufacturer",
    "year": "Year",
    "serialNumber": "SerialNumber",
    "condition": "Condition",
    "dailyRate": "DailyRate",
}
_CUSTOMER_FIELDS = {
    "name": "Name",
    "contactNumber": "ContactNumber",
    "email": "Email",
    "businessType": "BusinessType",
}


@app.exception_handler(RentalError)
async def rental_error_handler(_request: Request, exc: RentalError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def require_dealer(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
) -> int:
    session = _get_active_session(request, x_session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    try:
        dealer_id = int(session.get("dealerID") or 0)
    except (TypeError, ValueError):
        dealer_id = 0
    if dealer_id <= 0:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return dealer_id


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/register", status_code=201)
def auth_register(payload: DealerRegisterRequest, request: Request, db: Session = Depends(get_rental_db)):
    dealer = create_dealer(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        business_name=payload.businessName,
        phone=payload.phone,
    )
    log_audit(db, dealer.DealerID, "Auth", dealer.DealerID, "Register", f"email={dealer.Email}")
    db.commit()
    AUTH_LOGGER.info("Dealer registered dealer=%s", dealer.DealerID)
    return _start_session(request, dealer)


@app.post("/api/auth/login")
def auth_login(payload: AuthLoginRequest, request: Request, db: Session = Depends(get_rental_db)):
    client_ip = _get_client_ip(request)
    dealer = get_dealer_by_email(db, payload.email)
    if not verify_password(dealer, payload.password):
        AUTH_LOGGER.warning("Login failed ip=%s email=%s", client_ip, (payload.email or "").strip().lower())
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    log_audit(db, dealer.DealerID, "Auth", dealer.DealerID, "LoginSuccess", f"ip={client_ip}")
    db.commit()
    AUTH_LOGGER.info("Login success ip=%s dealer=%s", client_ip, dealer.DealerID)
    return _start_session(request, dealer)


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    if "session" in request.scope:
        request.session.clear()
    remove_session(x_session_token)
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _get_active_session(request, x_session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return {"user": session}


@app.get("/api/customers")
def get_customers(dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return [serialize_customer(customer) for customer in list_customers(db, dealer_id)]


@app.get("/api/customers/{customer_id}")
def get_customer_item(customer_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    customer = get_customer(db, dealer_id, customer_id, with_history=True)
    payload = serialize_customer(customer)
    rentals = sorted(customer.Rentals, key=lambda item: item.RentedOn, reverse=True)
    payload["rentals"] = [serialize_rental(rental) for rental in rentals]
    payload["payments"] = [serialize_payment(payment) for payment in list_payments(db, dealer_id, customer_id=customer_id)]
    return payload


@app.post("/api/customers", status_code=201)
def create_customer(payload: CustomerUpsert, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    values = payload.model_dump(exclude_unset=True)
    missing = [field for field in ("name", "contactNumber", "businessType") if not values.get(field)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    _require_choice(values, "businessType", BUSINESS_TYPES)

    customer = Customer(DealerID=dealer_id, TotalRentals=0, TotalOutstandingDue=0, IsActive=True)
    for field, value in values.items():
        setattr(customer, _CUSTOMER_FIELDS[field], value.strip().lower() if field == "email" and value else value)
    customer.CreatedDate = datetime.now()
    customer.UpdatedDate = datetime.now()

    db.add(customer)
    db.flush()
    log_audit(db, dealer_id, "Customer", customer.CustomerID, "CreateCustomer", customer.Name)
    db.commit()
    db.refresh(customer)
    return serialize_customer(customer)


@app.put("/api/customers/{customer_id}")
def update_customer(
    customer_id: int,
    payload: CustomerUpsert,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    customer = get_customer(db, dealer_id, customer_id)
    values = payload.model_dump(exclude_unset=True)
    _require_choice(values, "businessType", BUSINESS_TYPES)
    for field, value in values.items():
        if value is None and field in {"name", "contactNumber", "businessType"}:
            continue
        setattr(customer, _CUSTOMER_FIELDS[field], value.strip().lower() if field == "email" and value else value)
    customer.UpdatedDate = datetime.now()
    log_audit(db, dealer_id, "Customer", customer.CustomerID, "UpdateCustomer")
    db.commit()
    db.refresh(customer)
    return serialize_customer(customer)


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    customer = get_customer(db, dealer_id, customer_id)
    deactivate_customer(db, customer)
    log_audit(db, dealer_id, "Customer", customer.CustomerID, "DeleteCustomer")
    db.commit()
    return {"message": "Customer deleted"}


@app.get("/api/machines")
def get_machines(
    status: str | None = Query(None),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return [serialize_machine(machine) for machine in list_equipment(db, dealer_id, "machine", status)]


@app.get("/api/machines/{machine_id}")
def get_machine(machine_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    machine = get_equipment(db, dealer_id, "machine", machine_id)
    return _serialize_equipment_detail(db, dealer_id, machine, serialize_machine(machine), Rental.MachineID == machine_id)


@app.post("/api/machines", status_code=201)
def create_machine(payload: MachineUpsert, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    values = payload.model_dump(exclude_unset=True)
    missing = [field for field in ("machineName", "machineType", "model") if not values.get(field)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    _require_choice(values, "machineType", MACHINE_TYPES)

    machine = Machine(DealerID=dealer_id, Status=AVAILABLE, IsActive=True, DailyRate=0)
    _apply_fields(machine, values, _MACHINE_FIELDS)
    apply_admin_status_change(db, machine, values.get("status") or AVAILABLE)
    machine.CreatedDate = datetime.now()
    machine.UpdatedDate = datetime.now()

    db.add(machine)
    db.flush()
    log_audit(db, dealer_id, "Machine", machine.MachineID, "CreateMachine", machine.MachineName)
    db.commit()
    db.refresh(machine)
    return serialize_machine(machine)


@app.put("/api/machines/{machine_id}")
def update_machine(
    machine_id: int,
    payload: MachineUpsert,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    machine = get_equipment(db, dealer_id, "machine", machine_id)
    values = payload.model_dump(exclude_unset=True)
    _require_choice(values, "machineType", MACHINE_TYPES)
    if values.get("status"):
        apply_admin_status_change(db, machine, values["status"])
    _apply_fields(machine, values, _MACHINE_FIELDS)
    machine.UpdatedDate = datetime.now()
    log_audit(db, dealer_id, "Machine", machine.MachineID, "UpdateMachine", f"status={machine.Status}")
    db.commit()
    db.refresh(machine)
    return serialize_machine(machine)


@app.delete("/api/machines/{machine_id}")
def delete_machine(machine_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    machine = get_equipment(db, dealer_id, "machine", machine_id)
    deactivate_equipment(db, machine)
    log_audit(db, dealer_id, "Machine", machine.MachineID, "DeleteMachine")
    db.commit()
    return {"message": "Machine deleted"}


@app.get("/api/vehicles")
def get_vehicles(
    status: str | None = Query(None),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return [serialize_vehicle(vehicle) for vehicle in list_equipment(db, dealer_id, "vehicle", status)]


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    vehicle = get_equipment(db, dealer_id, "vehicle", vehicle_id)
    return _serialize_equipment_detail(db, dealer_id, vehicle, serialize_vehicle(vehicle), Rental.VehicleID == vehicle_id)


@app.post("/api/vehicles", status_code=201)
def create_vehicle(payload: VehicleUpsert, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    values = payload.model_dump(exclude_unset=True)
    missing = [field for field in ("type", "model") if not values.get(field)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    _require_choice(values, "type", VEHICLE_TYPES)
    _require_choice(values, "condition", VEHICLE_CONDITIONS)
    if not values.get("vehicleNumber"):
        values["vehicleNumber"] = generate_vehicle_number(dealer_id, values["type"])
    _ensure_unique_vehicle_number(db, dealer_id, values["vehicleNumber"])

    vehicle = Vehicle(DealerID=dealer_id, Status=AVAILABLE, Condition="good", IsActive=True)
    _apply_fields(vehicle, values, _VEHICLE_FIELDS)
    apply_admin_status_change(db, vehicle, values.get("status") or AVAILABLE)
    vehicle.CreatedDate = datetime.now()
    vehicle.UpdatedDate = datetime.now()

    db.add(vehicle)
    db.flush()
    log_audit(db, dealer_id, "Vehicle", vehicle.VehicleID, "CreateVehicle", vehicle.VehicleNumber)
    db.commit()
    db.refresh(vehicle)
    return serialize_vehicle(vehicle)


@app.put("/api/vehicles/{vehicle_id}")
def update_vehicle(
    vehicle_id: int,
    payload: VehicleUpsert,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    vehicle = get_equipment(db, dealer_id, "vehicle", vehicle_id)
    values = payload.model_dump(exclude_unset=True)
    _require_choice(values, "type", VEHICLE_TYPES)
    _require_choice(values, "condition", VEHICLE_CONDITIONS)
    if values.get("vehicleNumber") and values["vehicleNumber"] != vehicle.VehicleNumber:
        _ensure_unique_vehicle_number(db, dealer_id, values["vehicleNumber"])
    if values.get("status"):
        apply_admin_status_change(db, vehicle, values["status"])
    _apply_fields(vehicle, values, _VEHICLE_FIELDS)
    vehicle.UpdatedDate = datetime.now()
    log_audit(db, dealer_id, "Vehicle", vehicle.VehicleID, "UpdateVehicle", f"status={vehicle.Status}")
    db.commit()
    db.refresh(vehicle)
    return serialize_vehicle(vehicle)


@app.delete("/api/vehicles/{vehicle_id}")
def delete_vehicle(vehicle_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    vehicle = get_equipment(db, dealer_id, "vehicle", vehicle_id)
    deactivate_equipment(db, vehicle)
    log_audit(db, dealer_id, "Vehicle", vehicle.VehicleID, "DeleteVehicle")
    db.commit()
    return {"message": "Vehicle deleted"}


@app.get("/api/rentals")
def get_rentals(
    status: str | None = Query(None),
    customer_id: int | None = Query(None, alias="customerID"),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return [serialize_rental(rental) for rental in list_rentals(db, dealer_id, status, customer_id)]


@app.get("/api/rentals/{rental_id}")
def get_rental_item(rental_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return serialize_rental(get_rental(db, dealer_id, rental_id), include_payments=True)


@app.post("/api/rentals", status_code=201)
def create_rental(payload: CreateRentalDto, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    kind, item_id = ("machine", payload.machineID) if payload.machineID is not None else ("vehicle", payload.vehicleID)
    rental = open_rental(
        db,
        dealer_id,
        payload.customerID,
        kind,
        item_id,
        payload.rentalAmount,
        payload.securityDeposit,
        expected_return_date=payload.expectedReturnDate,
        notes=payload.notes,
    )
    return serialize_rental(rental, include_payments=True)


@app.put("/api/rentals/{rental_id}")
def update_rental(
    rental_id: int,
    payload: ReturnRequest,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    rental = close_rental(db, dealer_id, rental_id, payload.returnCondition, payload.notes)
    if rental.ReturnCondition in DAMAGE_CONDITIONS:
        raise_damage_alert(db, rental)
    return serialize_rental(rental, include_payments=True)


@app.post("/api/rentals/{rental_id}/return")
def return_rental(
    rental_id: int,
    payload: ReturnRequest,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return update_rental(rental_id, payload, dealer_id, db)


@app.delete("/api/rentals/{rental_id}")
def delete_rental(rental_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    rental = cancel_rental(db, dealer_id, rental_id)
    return {"message": "Rental cancelled", "rental": serialize_rental(rental)}


@app.get("/api/payments")
def get_payments(
    customer_id: int | None = Query(None, alias="customerID"),
    rental_id: int | None = Query(None, alias="rentalID"),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return [serialize_payment(payment) for payment in list_payments(db, dealer_id, customer_id, rental_id)]


@app.get("/api/payments/{payment_id}")
def get_payment_item(payment_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return serialize_payment(get_payment(db, dealer_id, payment_id))


@app.post("/api/payments", status_code=201)
def create_payment(payload: CreatePaymentDto, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    payment = record_payment(
        db,
        dealer_id,
        payload.customerID,
        payload.rentalID,
        payload.amountPaid,
        payload.outstandingDue,
        payload.paymentMethod,
        transaction_reference=payload.transactionReference,
        notes=payload.notes,
        payment_date=payload.paymentDate,
    )
    return serialize_payment(payment)


@app.put("/api/payments/{payment_id}")
def update_payment_item(
    payment_id: int,
    payload: UpdatePaymentDto,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    payment = update_payment(db, dealer_id, payment_id, payload.model_dump(exclude_unset=True))
    return serialize_payment(payment)


@app.delete("/api/payments/{payment_id}")
def delete_payment_item(payment_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    total = delete_payment(db, dealer_id, payment_id)
    return {"message": "Payment deleted", "totalOutstandingDue": total}


@app.get("/api/alerts")
def get_alerts(
    status: str | None = Query(ALERT_ACTIVE),
    alert_type: str | None = Query(None, alias="type"),
    priority: str | None = Query(None),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return [serialize_alert(alert) for alert in list_alerts(db, dealer_id, status, alert_type, priority)]


@app.get("/api/alerts/count")
def get_alert_count(dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return count_alerts(db, dealer_id)


@app.post("/api/alerts/generate")
def run_alerts(dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return {"overdueRentals": generate_overdue_rental_alerts(db, dealer_id)}


@app.put("/api/alerts/{alert_id}/acknowledge")
def acknowledge_alert_item(
    alert_id: int,
    payload: AlertActionRequest | None = None,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    notes = payload.notes if payload else None
    return serialize_alert(acknowledge_alert(db, dealer_id, alert_id, notes))


@app.put("/api/alerts/{alert_id}/resolve")
@app.post("/api/alerts/{alert_id}/resolve")
def resolve_alert_item(
    alert_id: int,
    payload: AlertActionRequest | None = None,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    notes = payload.notes if payload else None
    return serialize_alert(resolve_alert(db, dealer_id, alert_id, notes))


@app.delete("/api/alerts/{alert_id}")
def dismiss_alert_item(alert_id: int, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    dismiss_alert(db, dealer_id, alert_id)
    return {"message": "Alert dismissed"}


@app.get("/api/audit")
def get_audit_log(
    entity_type: str | None = Query(None, alias="entityType"),
    limit: int = Query(100, ge=1, le=1000),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return list_audit_entries(db, dealer_id, entity_type, limit)


@app.get("/api/dashboard/stats")
def get_dashboard_stats(dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return dashboard_stats(db, dealer_id)


@app.get("/api/dashboard/recent-activity")
def get_recent_activity(
    limit: int = Query(10, ge=1, le=100),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return recent_activity(db, dealer_id, limit)


@app.get("/api/dashboard/revenue-chart")
def get_revenue_chart(
    period: str = Query("month"),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return revenue_chart(db, dealer_id, period)


@app.get("/api/search")
def search_everything(
    query: str | None = Query(None),
    kind: str | None = Query(None, alias="type"),
    limit: int = Query(10, ge=1, le=100),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return search(db, dealer_id, query, kind, limit)


@app.get("/api/search/suggestions")
def search_suggestions(
    query: str | None = Query(None),
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    return suggestions(db, dealer_id, query)


@app.get("/api/settings/profile")
def get_profile(dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    return serialize_dealer(_get_dealer(db, dealer_id))


@app.put("/api/settings/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    dealer_id: int = Depends(require_dealer),
    db: Session = Depends(get_rental_db),
):
    dealer = update_dealer_profile(db, _get_dealer(db, dealer_id), payload.model_dump(exclude_unset=True))
    log_audit(db, dealer_id, "Dealer", dealer_id, "UpdateProfile")
    db.commit()
    if "session" in request.scope and isinstance(request.session.get("user"), dict):
        request.session["user"] = {**request.session["user"], "name": dealer.Name, "email": dealer.Email, "businessName": dealer.BusinessName}
    return serialize_dealer(dealer)


@app.put("/api/settings/password")
def update_password(payload: PasswordChangeRequest, dealer_id: int = Depends(require_dealer), db: Session = Depends(get_rental_db)):
    change_password(db, _get_dealer(db, dealer_id), payload.currentPassword, payload.newPassword)
    log_audit(db, dealer_id, "Dealer", dealer_id, "ChangePassword")
    db.commit()
    AUTH_LOGGER.info("Password changed dealer=%s", dealer_id)
    return {"message": "Password updated successfully"}


def _require_choice(values: dict, field: str, allowed: set[str]) -> None:
    value = values.get(field)
    if value is not None and value not in allowed:
        raise HTTPException(status_code=400, detail=f"{field} must be one of: {', '.join(sorted(allowed))}")


def _get_dealer(db: Session, dealer_id: int) -> Dealer:
    dealer = db.get(Dealer, dealer_id)
    if dealer is None or not dealer.IsActive:
        raise NotFoundError("Dealer not found")
    return dealer


def _apply_fields(target, values: dict, field_map: dict[str, str]) -> None:
    for field, value in values.items():
        column = field_map.get(field)
        if column is None:
            continue
        setattr(target, column, value)


def _ensure_unique_vehicle_number(db: Session, dealer_id: int, vehicle_number: str) -> None:
    existing = db.execute(
        select(Vehicle.VehicleID)
        .where(Vehicle.DealerID == dealer_id)
        .where(Vehicle.VehicleNumber == vehicle_number)
    ).first()
    if existing is not None:
        raise ConflictError(f"Vehicle number {vehicle_number} already exists.")


def _serialize_equipment_detail(db: Session, dealer_id: int, equipment, payload: dict, rental_filter) -> dict:
    history = list_rentals_for_equipment(db, dealer_id, rental_filter)
    current = next((rental for rental in history if rental.RentalID == equipment.CurrentRentalID), None)
    payload["rentalHistory"] = [serialize_rental(rental) for rental in history]
    payload["currentRental"] = serialize_rental(current) if current else None
    payload["availability"] = equipment.Status
    return payload


def list_rentals_for_equipment(db: Session, dealer_id: int, rental_filter) -> list[Rental]:
    stmt = (
        select(Rental)
        .where(Rental.DealerID == dealer_id)
        .where(rental_filter)
        .order_by(Rental.RentedOn.desc(), Rental.RentalID.desc())
    )
    return list(db.execute(stmt).scalars().all())


def _start_session(request: Request, dealer) -> dict:
    session_payload = {
        "dealerID": dealer.DealerID,
        "name": dealer.Name,
        "email": dealer.Email,
        "businessName": dealer.BusinessName,
    }
    token = create_session(session_payload)
    if "session" in request.scope:
        request.session["user"] = dict(session_payload)
    return {"sessionToken": token, "dealer": serialize_dealer(dealer)}


def _get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    return request.client.host if request.client and request.client.host else "unknown"


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    if session_token:
        session_from_token = get_session(session_token)
        if session_from_token:
            if "session" in request.scope:
                request.session["user"] = dict(session_from_token)
            return dict(session_from_token)
        return None
    if "session" in request.scope:
        session_from_cookie = request.session.get("user")
        if isinstance(session_from_cookie, dict):
            return dict(session_from_cookie)
    return None
