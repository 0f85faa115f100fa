from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.rental_models import Dealer
from services.errors import ConflictError, RentalValidationError


MIN_PASSWORD_LENGTH = 6


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def get_dealer_by_email(db: Session, email: str) -> Dealer | None:
    normalized = _normalize_email(email)
    if not normalized:
        return None
    return db.execute(select(Dealer).where(func.lower(Dealer.Email) == normalized)).scalars().first()


def create_dealer(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    business_name: str | None = None,
    phone: str | None = None,
) -> Dealer:
    normalized = _normalize_email(email)
    if not normalized:
        raise RentalValidationError("Email is required.")
    trimmed = str(password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise RentalValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if get_dealer_by_email(db, normalized):
        raise ConflictError("A dealer with this email already exists.")

    salt = secrets.token_hex(16)
    dealer = Dealer(
        Name=(name or "").strip(),
        Email=normalized,
        Phone=phone,
        BusinessName=business_name,
        PasswordSalt=salt,
        PasswordHash=_password_hash(trimmed, salt),
        IsActive=True,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(dealer)
    db.commit()
    db.refresh(dealer)
    return dealer


def verify_password(dealer: Dealer | None, password: str) -> bool:
    if dealer is None or not dealer.IsActive:
        return False
    if not dealer.PasswordHash or not dealer.PasswordSalt:
        return False
    candidate = _password_hash((password or "").strip(), dealer.PasswordSalt)
    return hmac.compare_digest(candidate, dealer.PasswordHash)


_PROFILE_FIELDS = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "businessName": "BusinessName",
}


def update_dealer_profile(db: Session, dealer: Dealer, changes: dict[str, Any]) -> Dealer:
    for field, value in changes.items():
        column = _PROFILE_FIELDS.get(field)
        if column is None:
            continue
        if column == "Email":
            value = _normalize_email(value)
            if not value:
                raise RentalValidationError("Email is required.")
            existing = get_dealer_by_email(db, value)
            if existing is not None and existing.DealerID != dealer.DealerID:
                raise ConflictError("Email is already taken.")
        elif column == "Name":
            value = (value or "").strip()
            if not value:
                raise RentalValidationError("Name is required.")
        setattr(dealer, column, value)
    dealer.UpdatedDate = datetime.now()
    db.commit()
    db.refresh(dealer)
    return dealer


def change_password(db: Session, dealer: Dealer, current_password: str, new_password: str) -> None:
    if not verify_password(dealer, current_password):
        raise RentalValidationError("Current password is incorrect.")
    trimmed = str(new_password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise RentalValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    salt = secrets.token_hex(16)
    dealer.PasswordSalt = salt
    dealer.PasswordHash = _password_hash(trimmed, salt)
    dealer.UpdatedDate = datetime.now()
    db.commit()


def serialize_dealer(dealer: Dealer) -> dict[str, Any]:
    return {
        "dealerID": dealer.DealerID,
        "name": dealer.Name,
        "email": dealer.Email,
        "businessName": dealer.BusinessName,
        "phone": dealer.Phone,
    }
