"""
Domain errors for the ordering and billing core.

Services raise these; main.py turns them into the JSON envelope
``{"success": false, "message": ...}`` with the matching status code.
"""
from typing import Optional, Union


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or malformed input. Raised before any write."""

    status_code = 400


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[Union[int, str]] = None):
        if entity_id is not None:
            message = f"{entity} {entity_id} not found"
        else:
            message = f"{entity} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(AppError):
    """The request is well formed but the current state forbids it."""

    status_code = 409


class AlreadyPaidError(ConflictError):
    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} is already paid")
        self.session_id = session_id


class PersistenceError(AppError):
    """The transaction failed and was rolled back."""

    status_code = 500
