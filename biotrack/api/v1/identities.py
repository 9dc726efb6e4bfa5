import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.api.errors import database_unavailable, http_error
from biotrack.config import get_settings
from biotrack.core.exceptions import AttendanceError, IdentityNotFound
from biotrack.crud.identity import create_identity, get_identity, list_identities
from biotrack.dependencies import get_db
from biotrack.schemas.identity_schema import EmbeddingEnroll, IdentityCreate, IdentityResponse
from biotrack.services.enrollment import check_not_duplicate, enroll_embedding
from biotrack.services.face_service import face_capture_service

logger = logging.getLogger(__name__)

identity_router = APIRouter(prefix="/identities", tags=["identities"])


@identity_router.post("", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
async def register_identity(
        payload: IdentityCreate,
        db: AsyncSession = Depends(get_db)
):
    """
    Register an identity, optionally enrolling its face embedding at once.

    - **identity_id**: student/employee id, or email for staff
    - **embedding**: rejected if it matches an already enrolled face
    """
    threshold = get_settings().login_match_threshold
    try:
        logger.info(f"Starting registration for identity: {payload.identity_id}")

        if await get_identity(db, payload.identity_id):
            logger.warning(f"Registration failed - identity already exists: {payload.identity_id}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"message": "Identity already exists", "error_type": "identity_exists"}
            )

        embedding = None
        if payload.embedding is not None:
            embedding = await check_not_duplicate(db, payload.embedding, threshold)

        # Identity and embedding are written together or not at all
        identity = await create_identity(
            db,
            identity_id=payload.identity_id,
            display_name=payload.display_name,
            role=payload.role,
            email=payload.email,
            embedding=embedding
        )

        logger.info(f"Identity registered: {identity.identity_id} (role: {identity.role})")
        return IdentityResponse.model_validate(identity)

    except AttendanceError as e:
        raise http_error(e)
    except IntegrityError as e:
        logger.error(f"Integrity error registering {payload.identity_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Identity already exists", "error_type": "identity_exists"}
        )
    except SQLAlchemyError as e:
        raise database_unavailable(e, "identity registration")


@identity_router.get("", response_model=List[IdentityResponse])
async def get_identities(
        role: Optional[str] = Query(None, description="Filter by role"),
        db: AsyncSession = Depends(get_db)
):
    try:
        identities = await list_identities(db, role=role)
        return [IdentityResponse.model_validate(identity) for identity in identities]
    except SQLAlchemyError as e:
        raise database_unavailable(e, "identity listing")


@identity_router.get("/{identity_id}", response_model=IdentityResponse)
async def get_identity_by_id(identity_id: str, db: AsyncSession = Depends(get_db)):
    try:
        identity = await get_identity(db, identity_id)
        if identity is None:
            raise http_error(IdentityNotFound(f"Identity '{identity_id}' not found", identity_id=identity_id))
        return IdentityResponse.model_validate(identity)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "identity lookup")


@identity_router.put("/{identity_id}/embedding", response_model=IdentityResponse)
async def enroll_identity_embedding(
        identity_id: str,
        payload: EmbeddingEnroll,
        db: AsyncSession = Depends(get_db)
):
    """Enroll a face embedding for an identity that has none yet"""
    try:
        identity = await enroll_embedding(db, identity_id, payload.embedding, get_settings().login_match_threshold)
        return IdentityResponse.model_validate(identity)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "face enrollment")


@identity_router.post("/{identity_id}/face", response_model=IdentityResponse)
async def enroll_identity_face(
        identity_id: str,
        image: UploadFile = File(..., description="Clear, front-facing photo"),
        db: AsyncSession = Depends(get_db)
):
    """Enroll a face from a photo instead of a precomputed embedding"""
    embedding = await face_capture_service.embedding_from_upload(image)
    try:
        identity = await enroll_embedding(db, identity_id, embedding, get_settings().face_login_match_threshold)
        return IdentityResponse.model_validate(identity)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "face enrollment")
