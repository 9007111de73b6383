class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class InfeasibleScheduleError(AppError):
    """Raised when a class timetable cannot satisfy its subject requirements."""
    def __init__(self, message: str, *, class_id: str, conflicts: list[dict] | None = None):
        self.class_id = class_id
        self.conflicts = conflicts or []
        super().__init__(
            message,
            status_code=422,
            details={"class_id": class_id, "conflicts": self.conflicts},
        )

class OfferAlreadyResolvedError(AppError):
    """Raised when an offer response loses the compare-and-set on its status."""
    def __init__(self, offer_id: str, current_status: str | None = None):
        self.offer_id = offer_id
        self.current_status = current_status
        super().__init__(
            f"Replacement offer {offer_id} is already resolved",
            status_code=409,
            details={"offer_id": offer_id, "status": current_status},
        )

class OverrideConflictError(AppError):
    """Raised when a slot/date already carries an override for a different teacher."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class NoCandidateAvailableError(AppError):
    """Raised when the substitute candidate list for a slot/date is exhausted."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class SlotInvariantError(AppError):
    """Raised when a slot write would break a timetable invariant."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class StoreWriteError(AppError):
    """Raised when an atomic store write fails and is rolled back."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=500, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
