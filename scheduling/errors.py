"""
Domain errors raised by the scheduling engine.

Each carries the HTTP status the boundary layer answers with; the app
registers one handler for SchedulingError. Store failures are never wrapped.
"""


class SchedulingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SchedulingError):
    status_code = 404

    def __init__(self, entity: str):
        super().__init__(f"{entity} not found")
        self.entity = entity


class ConflictError(SchedulingError):
    status_code = 409


class ValidationError(SchedulingError):
    status_code = 400


class NoStaffError(ValidationError):
    def __init__(self, message: str = "No active staff found for this shop"):
        super().__init__(message)


class PolicyViolationError(SchedulingError):
    status_code = 403


class CapacityExceededError(SchedulingError):
    status_code = 409

    def __init__(self, message: str = "Slot is full"):
        super().__init__(message)


class FullSlotError(CapacityExceededError):
    pass


class IllegalTransitionError(SchedulingError):
    status_code = 409


class BlockedSlotError(SchedulingError):
    status_code = 409

    def __init__(self, message: str = "Slot is blocked and cannot be booked"):
        super().__init__(message)
