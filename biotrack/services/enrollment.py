import logging
from typing import Iterable, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.core.exceptions import AlreadyEnrolled, DuplicateIdentity, IdentityNotFound
from biotrack.crud.identity import get_identity, load_embedding_snapshot, save_embedding
from biotrack.models.identity import Identity
from biotrack.services.matcher import Matcher
from biotrack.utils.face_helper import validate_embedding

logger = logging.getLogger(__name__)


async def check_not_duplicate(
        db: AsyncSession,
        embedding: Sequence[float],
        threshold: float,
        exclude: Iterable[str] = ()
) -> List[float]:
    """Validate an embedding and reject it if another identity already owns that face"""
    embedding = validate_embedding(list(embedding))

    matcher = Matcher(await load_embedding_snapshot(db))
    duplicate = matcher.find_duplicate(embedding, threshold, exclude=exclude)
    if duplicate is not None:
        logger.warning(f"Face matches enrolled identity {duplicate.identity_id} at {duplicate.distance:.4f}")
        raise DuplicateIdentity(
            "This face is already registered to another identity",
            distance=round(duplicate.distance, 4),
            threshold=threshold
        )
    return embedding


async def enroll_embedding(
        db: AsyncSession,
        identity_id: str,
        embedding: Sequence[float],
        duplicate_threshold: float
) -> Identity:
    """
    Write an identity's one embedding. Rejected if it already has one, or if
    the face lies within the duplicate threshold of another enrolled identity.
    """
    identity = await get_identity(db, identity_id)
    if identity is None:
        raise IdentityNotFound(f"Identity '{identity_id}' not found", identity_id=identity_id)
    if identity.is_enrolled:
        raise AlreadyEnrolled(f"Identity '{identity_id}' already has a face enrolled", identity_id=identity_id)

    embedding = await check_not_duplicate(db, embedding, duplicate_threshold, exclude=[identity_id])

    if not await save_embedding(db, identity_id, embedding):
        raise AlreadyEnrolled(f"Identity '{identity_id}' already has a face enrolled", identity_id=identity_id)

    logger.info(f"Enrolled face for {identity_id} ({len(embedding)} dimensions)")
    await db.refresh(identity)
    return identity
