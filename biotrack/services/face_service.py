import logging
from typing import List

from fastapi import HTTPException, UploadFile, status
from starlette.concurrency import run_in_threadpool

from biotrack.services.face_recognition import ServiceStatus, get_face_service

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/webp'}
MIN_IMAGE_BYTES = 1024
MAX_IMAGE_BYTES = 10 * 1024 * 1024


class FaceCaptureService:
    """Turns an uploaded photo into a single face embedding"""

    def __init__(self):
        self.face_service = None

    def _ensure_service_ready(self):
        if self.face_service is None:
            self.face_service = get_face_service()

        if self.face_service.status == ServiceStatus.NOT_LOADED:
            self.face_service.initialize()

        if not self.face_service.is_ready():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={
                    "message": "Face recognition service is not available",
                    "error": self.face_service.initialization_error,
                    "error_type": "service_unavailable"
                }
            )

    async def read_photo(self, image: UploadFile) -> bytes:
        if image.content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported file type '{image.content_type}'. Use JPEG, PNG, or WebP"
            )

        image_bytes = await image.read()
        if len(image_bytes) < MIN_IMAGE_BYTES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Image file too small or corrupted"
            )
        if len(image_bytes) > MAX_IMAGE_BYTES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Image file too large (max 10MB)"
            )
        return image_bytes

    def extract_embedding(self, photo_bytes: bytes) -> List[float]:
        """Detect exactly one usable face and return its embedding"""
        self._ensure_service_ready()

        result = self.face_service.process_image(photo_bytes)
        if not result.success:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=result.error_message or "Face detection failed"
            )

        if result.faces_detected > 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Multiple faces detected. Please upload an image with only one person."
            )

        quality = result.face_qualities[0]
        if not quality.get('valid', False):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Image quality issue: {quality.get('reason', 'Poor face quality')}"
            )

        logger.info(f"Face embedding extracted: {len(result.embeddings[0])} dimensions")
        return result.embeddings[0]

    async def embedding_from_upload(self, image: UploadFile) -> List[float]:
        photo_bytes = await self.read_photo(image)
        # Model inference is CPU bound
        return await run_in_threadpool(self.extract_embedding, photo_bytes)


# Create global instance
face_capture_service = FaceCaptureService()
