from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.config import get_settings
from biotrack.core.exceptions import PermissionDenied
from biotrack.crud.identity import get_identity
from biotrack.database import database
from biotrack.models.identity import Identity
from biotrack.services.excuses import ExcuseWorkflow
from biotrack.services.ledger import SessionLedger
from biotrack.services.verification import VerificationCoordinator


async def get_db() -> AsyncSession:
    """
    Dependency function that yields db sessions
    """
    async with database.get_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_actor(
        x_actor_id: Optional[str] = Header(None, description="Identity performing the request"),
        db: AsyncSession = Depends(get_db)
) -> Identity:
    """
    Resolve the caller's identity context from the X-Actor-Id header.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "X-Actor-Id header is required", "error_type": "missing_actor"}
        )

    actor = await get_identity(db, x_actor_id)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": f"Unknown actor '{x_actor_id}'", "error_type": "unknown_actor"}
        )
    return actor


def get_clock() -> Callable[[], datetime]:
    """
    Source of the attempt time. Attendance is always stamped with the
    server's clock, never a caller-supplied time.
    """
    return datetime.now


def get_ledger() -> SessionLedger:
    return SessionLedger(grace_minutes=get_settings().timeout_grace_minutes)


def get_coordinator(ledger: SessionLedger = Depends(get_ledger)) -> VerificationCoordinator:
    settings = get_settings()
    return VerificationCoordinator(
        ledger,
        login_threshold=settings.login_match_threshold,
        kiosk_threshold=settings.kiosk_match_threshold
    )


def get_face_coordinator(ledger: SessionLedger = Depends(get_ledger)) -> VerificationCoordinator:
    """Coordinator for embeddings produced by the server's own face model"""
    settings = get_settings()
    return VerificationCoordinator(
        ledger,
        login_threshold=settings.face_login_match_threshold,
        kiosk_threshold=settings.face_kiosk_match_threshold
    )


def get_excuse_workflow() -> ExcuseWorkflow:
    settings = get_settings()
    return ExcuseWorkflow(
        allow_resubmission=settings.allow_excuse_resubmission,
        review_window_days=settings.excuse_review_window_days
    )


def require_role(actor: Identity, *roles: str):
    if actor.role not in roles:
        raise PermissionDenied(
            f"This action requires one of: {', '.join(roles)}",
            actor_id=actor.identity_id,
            actor_role=actor.role
        )
