from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-date window."""

    date_from: date
    date_to: date

    def __post_init__(self) -> None:
        if self.date_from > self.date_to:
            raise ValueError(
                f"date_from {self.date_from} is after date_to {self.date_to}"
            )

    @property
    def days(self) -> int:
        return (self.date_to - self.date_from).days + 1

    @classmethod
    def trailing_days(cls, today: date, days: int) -> "DateRange":
        """``days`` full days ending yesterday. Today is never included
        because the marketplace has not finished counting it."""
        date_to = today - timedelta(days=1)
        return cls(date_to - timedelta(days=days - 1), date_to)


@dataclass(frozen=True)
class WorkspaceRef:
    """Detached snapshot of a workspace row, safe to hand to worker threads."""

    id: int
    user_id: int
    owner_email: Optional[str]
    api_key: Optional[str]
    last_data_update_at: Optional[datetime] = None
    last_data_update_requested_at: Optional[datetime] = None

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @classmethod
    def from_model(cls, workspace) -> "WorkspaceRef":
        user = getattr(workspace, "user", None)
        return cls(
            id=workspace.id,
            user_id=workspace.user_id,
            owner_email=getattr(user, "email", None),
            api_key=workspace.api_key,
            last_data_update_at=workspace.last_data_update_at,
            last_data_update_requested_at=workspace.last_data_update_requested_at,
        )
