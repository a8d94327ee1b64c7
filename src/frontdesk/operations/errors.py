"""
Operation store errors.
"""

from uuid import UUID

from frontdesk.shared.exceptions import ConflictError, FrontdeskError, NotFoundError


class OperationStoreError(FrontdeskError):
    """Base class for operation store failures."""


class OperationNotFoundError(OperationStoreError, NotFoundError):
    """Raised when an operation id does not exist."""

    def __init__(self, operation_id: UUID) -> None:
        super().__init__(f"Operation {operation_id} not found")
        self.operation_id = operation_id


class AlreadyClaimedError(OperationStoreError, ConflictError):
    """Raised when a claim loses the pending -> in_flight race."""

    def __init__(self, operation_id: UUID, status: str | None = None) -> None:
        detail = f" (status={status})" if status else ""
        super().__init__(f"Operation {operation_id} is not claimable{detail}")
        self.operation_id = operation_id
        self.status = status


class InvalidTransitionError(OperationStoreError, ConflictError):
    """Raised when a state change is requested from an incompatible status."""

    def __init__(self, operation_id: UUID, current: str, requested: str) -> None:
        super().__init__(
            f"Operation {operation_id} cannot go from {current} to {requested}"
        )
        self.operation_id = operation_id
        self.current = current
        self.requested = requested
