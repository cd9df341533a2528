from typing import Iterable

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Group or message does not exist (or no longer matches)."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthError(HTTPException):
    """Acting user is not allowed to perform the operation."""

    def __init__(self, detail: str = "Not allowed"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ValidationError(HTTPException):
    """Empty name, body or member list, or an otherwise invalid request."""

    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class TransientStoreError(HTTPException):
    """Backing store unavailable or timed out. Safe to retry."""

    def __init__(self, detail: str = "Store temporarily unavailable", retry_after: int = 5):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
        )


class PartialFailure(Exception):
    """
    Some per-member index writes failed after the group document was written.

    Never surfaced to clients: the group document stays authoritative and the
    missing entries are reconciled by the repair operations.
    """

    def __init__(self, operation: str, group_id: str, failed_user_ids: Iterable[str]):
        self.operation = operation
        self.group_id = group_id
        self.failed_user_ids = sorted(failed_user_ids)
        super().__init__(
            f"{operation} on group {group_id}: index update failed for "
            f"{len(self.failed_user_ids)} member(s)"
        )
