"""Errors raised by the scheduling core.

Booking collisions are not errors; they come back as ``ConflictResult`` values.
"""

from fastapi import status


class SchedulingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(SchedulingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class TransientStoreError(SchedulingError):
    """The store could not be reached or did not answer within the timeout."""
