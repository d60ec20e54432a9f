"""Error taxonomy shared by the sync and reporting services.

Services raise these; the HTTP layer turns them into JSON responses (see
``seller_analytics.main``). Batch sync runs never let them escape a single
workspace task.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class SellerAnalyticsError(Exception):
    status_code: int = 500
    error_code: str = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class PeriodValidationError(SellerAnalyticsError):
    """A reporting period (or period list) violates one of the window rules."""

    status_code = 400
    error_code = "validation_error"

    def __init__(self, rule: str, message: str, params: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.rule = rule
        self.params = params or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["rule"] = self.rule
        payload["params"] = {k: str(v) for k, v in self.params.items()}
        return payload


class ManualSyncRateLimitError(SellerAnalyticsError):
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, remaining_hours: int, unit_label: str):
        super().__init__(
            f"Data can be refreshed again in {remaining_hours} {unit_label}"
        )
        self.remaining_hours = remaining_hours
        self.unit_label = unit_label

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["remaining_hours"] = self.remaining_hours
        payload["unit_label"] = self.unit_label
        return payload


class NotFoundError(SellerAnalyticsError):
    status_code = 404
    error_code = "not_found"


class MissingCredentialError(SellerAnalyticsError):
    status_code = 409
    error_code = "missing_credential"


class TransientSyncError(SellerAnalyticsError):
    """Fetching or persisting one workspace's data failed."""

    status_code = 502
    error_code = "sync_failed"


class UnexpectedError(SellerAnalyticsError):
    """Anything uncategorized that reached the HTTP layer."""

    status_code = 500
    error_code = "internal_error"

    @classmethod
    def wrap(cls, exc: BaseException) -> "UnexpectedError":
        wrapped = cls(str(exc) or type(exc).__name__)
        wrapped.__cause__ = exc
        return wrapped

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.__cause__ is not None:
            payload["type"] = type(self.__cause__).__name__
        return payload


class UnknownCodeError(ValueError):
    """An external numeric code has no member in the corresponding enum."""

    def __init__(self, enum_name: str, code: Any):
        super().__init__(f"Unknown {enum_name} code: {code!r}")
        self.enum_name = enum_name
        self.code = code
