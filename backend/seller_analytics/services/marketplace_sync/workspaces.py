from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from seller_analytics.exceptions import NotFoundError
from seller_analytics.models_sqlalchemy.models import User, UserRole, Workspace
from seller_analytics.utils.logger import logger


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def list_eligible_workspaces(db: Session, role: UserRole = UserRole.seller) -> List[Workspace]:
    """Workspaces with a credential whose owner is active and has ``role``.

    Ordered by id so run logs are reproducible.
    """
    return (
        db.query(Workspace)
        .join(User, Workspace.user_id == User.id)
        .options(joinedload(Workspace.user))
        .filter(
            Workspace.api_key.isnot(None),
            User.is_active.is_(True),
            User.role == role,
        )
        .order_by(Workspace.id.asc())
        .all()
    )


def get_workspace(db: Session, workspace_id: int) -> Workspace:
    workspace = (
        db.query(Workspace)
        .options(joinedload(Workspace.user))
        .filter(Workspace.id == workspace_id)
        .first()
    )
    if workspace is None:
        raise NotFoundError(f"Workspace {workspace_id} not found")
    return workspace


def get_default_workspace(db: Session, account_id: int) -> Workspace:
    """The account's default workspace, else its oldest one."""
    user = db.query(User).filter(User.id == account_id).first()
    if user is None:
        raise NotFoundError(f"Account {account_id} not found")

    workspace = (
        db.query(Workspace)
        .options(joinedload(Workspace.user))
        .filter(Workspace.user_id == account_id)
        .order_by(Workspace.is_default.desc(), Workspace.id.asc())
        .first()
    )
    if workspace is None:
        raise NotFoundError(f"Account {account_id} has no workspaces")
    return workspace


def claim_manual_sync(
    db: Session,
    workspace_id: int,
    observed_requested_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Stamp ``last_data_update_requested_at = now`` only if it still holds the
    value the caller observed.

    Returns False when another request changed it first. Does not commit.
    """
    stmt = update(Workspace).where(Workspace.id == workspace_id)
    if observed_requested_at is None:
        stmt = stmt.where(Workspace.last_data_update_requested_at.is_(None))
    else:
        stmt = stmt.where(Workspace.last_data_update_requested_at == observed_requested_at)
    stmt = stmt.values(last_data_update_requested_at=now).execution_options(synchronize_session=False)

    result = db.execute(stmt)
    claimed = result.rowcount == 1
    if not claimed:
        logger.info(f"Manual sync claim lost for workspace {workspace_id}")
    return claimed


def mark_requested(db: Session, workspace_id: int, now: datetime) -> None:
    db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(last_data_update_requested_at=now)
        .execution_options(synchronize_session=False)
    )


def mark_credential_invalid(db: Session, workspace_id: int, error: str, now: Optional[datetime] = None) -> None:
    now = now or _now_utc()
    db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(is_valid=False, last_validated_at=now, validation_error=error[:1000])
        .execution_options(synchronize_session=False)
    )
