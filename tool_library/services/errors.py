from __future__ import annotations


class LibraryError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class RentalValidationError(LibraryError):
    kind = "validation"
    status_code = 400


class MaintenanceBlockedError(LibraryError):
    kind = "maintenance_blocked"
    status_code = 409

    def __init__(self, message: str, importance: str):
        super().__init__(message)
        self.importance = importance

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["importance"] = self.importance
        return detail


class ConflictError(LibraryError):
    kind = "conflict"
    status_code = 409


class StateTransitionError(LibraryError):
    kind = "state_transition"
    status_code = 409


class NotFoundError(LibraryError):
    kind = "not_found"
    status_code = 404
