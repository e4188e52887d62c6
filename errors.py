"""
Booking error taxonomy.

Routes in main.py translate these into HTTP responses; the background
calendar task only ever logs MirrorError.
"""


class BookingError(Exception):
    """Base class for every failure the booking flow reports."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Missing field, unparseable start time, past start or too little notice."""

    status_code = 400


class ConflictError(BookingError):
    """The conflict engine rejected the proposal."""

    status_code = 409

    def __init__(self, message: str, booking=None):
        super().__init__(message)
        self.booking = booking


class StoreError(BookingError):
    status_code = 500


class MirrorError(BookingError):
    status_code = 502


class AuthError(BookingError):
    status_code = 401


class NotFoundError(BookingError):
    status_code = 404
