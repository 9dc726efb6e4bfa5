import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from biotrack.core.exceptions import InvalidEmbedding
from biotrack.models.identity import Identity
from biotrack.utils.face_helper import embedding_from_json, embedding_to_json

logger = logging.getLogger(__name__)


async def get_identity(db: AsyncSession, identity_id: str) -> Optional[Identity]:
    result = await db.execute(
        select(Identity).where(Identity.identity_id == identity_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_identities(db: AsyncSession, role: Optional[str] = None) -> List[Identity]:
    query = select(Identity)
    if role:
        query = query.where(Identity.role == role)
    result = await db.execute(query.order_by(Identity.identity_id))
    return result.scalars().all()


async def list_enrolled(db: AsyncSession) -> List[Identity]:
    """All identities holding an embedding, in enrollment order"""
    result = await db.execute(
        select(Identity)
        .where(Identity.embedding.isnot(None))
        .order_by(Identity.enrolled_at, Identity.identity_id)
    )
    return result.scalars().all()


async def load_embedding_snapshot(db: AsyncSession) -> Dict[str, List[float]]:
    """
    Read every enrolled embedding into memory for matching.
    Malformed stored embeddings are skipped rather than matched against.
    """
    snapshot = {}
    for identity in await list_enrolled(db):
        try:
            snapshot[identity.identity_id] = embedding_from_json(identity.embedding)
        except InvalidEmbedding as e:
            logger.warning(f"Skipping malformed embedding for {identity.identity_id}: {e.message}")
    return snapshot


async def get_embedding(db: AsyncSession, identity_id: str) -> Optional[List[float]]:
    identity = await get_identity(db, identity_id)
    if identity is None:
        return None
    return embedding_from_json(identity.embedding)


async def create_identity(
        db: AsyncSession,
        identity_id: str,
        display_name: str,
        role: str = "student",
        email: Optional[str] = None,
        embedding: Optional[List[float]] = None
) -> Identity:
    """Insert an identity, enrolling its embedding in the same commit when given"""
    now = datetime.now()
    identity = Identity(
        identity_id=identity_id,
        display_name=display_name,
        role=role,
        email=email,
        embedding=embedding_to_json(embedding) if embedding is not None else None,
        enrolled_at=now if embedding is not None else None,
        created_at=now
    )
    db.add(identity)
    await db.commit()
    await db.refresh(identity)
    return identity


async def save_embedding(db: AsyncSession, identity_id: str, embedding: List[float]) -> bool:
    """
    Store an embedding only if the identity has none yet.
    Returns False when nothing was written.
    """
    result = await db.execute(
        update(Identity)
        .where(Identity.identity_id == identity_id, Identity.embedding.is_(None))
        .values(embedding=embedding_to_json(embedding), enrolled_at=datetime.now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1
