from __future__ import annotations

import uuid


class AnalyticsRefreshError(Exception):
    """Raised when denormalized analytics records cannot be rebuilt.

    The underlying failure is chained as ``__cause__`` and also kept on
    ``cause`` so callers can inspect it without walking the chain.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        account_id: uuid.UUID | None = None,
        bundle_id: uuid.UUID | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.account_id = account_id
        self.bundle_id = bundle_id


class AccountNotFoundError(AnalyticsRefreshError):
    def __init__(self, account_id: uuid.UUID) -> None:
        super().__init__(f"account {account_id} not found", account_id=account_id)
