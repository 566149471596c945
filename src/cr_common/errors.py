"""Unified error codes and custom exceptions.

Error code ranges:
  2xxx: Credits balance (20xx server side, 21xx client sync)
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 20xx: Credits (system of record) ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient credits: required {required}, available {available}",
            422,
        )


class AccountNotFoundError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(2002, f"Credits balance not found for user {user_id}", 404)


class InvalidAmountError(AppError):
    def __init__(self, amount: int) -> None:
        super().__init__(2003, f"Credit amount must be positive, got {amount}", 422)


# --- 21xx: Credits (client-side sync) ---

class CacheUnavailableError(AppError):
    """Snapshot cache could not be read or written. Never fatal."""

    def __init__(self, detail: str) -> None:
        super().__init__(2101, f"Snapshot cache unavailable: {detail}", 503)


class RemoteFetchFailedError(AppError):
    def __init__(self, user_id: str, detail: str) -> None:
        super().__init__(2102, f"Failed to load credits for {user_id}: {detail}", 502)


class SubscriptionFailedError(AppError):
    def __init__(self, user_id: str, detail: str) -> None:
        super().__init__(2103, f"Balance subscription error for {user_id}: {detail}", 502)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
