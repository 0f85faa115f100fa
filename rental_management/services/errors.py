from __future__ import annotations


class RentalError(Exception):
    """Base error raised by the service layer; the API maps ``status_code`` onto the response."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(RentalError):
    status_code = 404


class ConflictError(RentalError):
    status_code = 409


class RentalValidationError(RentalError):
    status_code = 400
