import io
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from biotrack.config import get_settings

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    """Service status enumeration"""
    NOT_LOADED = "not_loaded"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass
class ServiceConfig:
    """Configuration for FaceService"""
    model_name: str = "buffalo_s"
    detection_threshold: float = 0.35
    detection_size: Tuple[int, int] = (640, 640)
    min_face_size: int = 80
    max_image_dimension: int = 2000
    providers: List[str] = field(default_factory=lambda: ['CPUExecutionProvider'])
    model_cache_dir: str = "./.insightface_models"
    enable_quality_check: bool = True
    max_retries: int = 3
    retry_delay: float = 2.0


@dataclass
class FaceDetectionResult:
    """Structured result for face detection"""
    success: bool
    faces_detected: int
    embeddings: List[List[float]]
    bounding_boxes: List[Dict[str, Any]]
    face_qualities: List[Dict[str, Any]]
    processing_time_ms: float = 0.0
    error_message: Optional[str] = None


class FaceService:
    """
    Detects faces in a photo and produces L2-normalised embeddings with
    InsightFace. The model is loaded on first use.
    """

    def __init__(self, config: Optional[ServiceConfig] = None):
        self.config = config or ServiceConfig()
        self.app = None
        self.status = ServiceStatus.NOT_LOADED
        self.initialization_error = None

    def initialize(self):
        """Load the face analysis model, retrying a few times"""
        if self.status == ServiceStatus.READY:
            return

        self.status = ServiceStatus.INITIALIZING
        model_dir = Path(self.config.model_cache_dir)
        model_dir.mkdir(parents=True, exist_ok=True)
        os.environ['INSIGHTFACE_MODELS_ROOT'] = str(model_dir)
        logger.info(f"Loading face model {self.config.model_name} from {model_dir.absolute()}")

        try:
            from insightface.app import FaceAnalysis
        except ImportError as e:
            logger.error(f"InsightFace import failed: {e}")
            self.initialization_error = f"Missing package: {str(e)}"
            self.status = ServiceStatus.ERROR
            return

        for attempt in range(self.config.max_retries):
            try:
                self.app = FaceAnalysis(
                    name=self.config.model_name,
                    providers=self.config.providers,
                    root=str(model_dir)
                )
                self.app.prepare(
                    ctx_id=0,
                    det_thresh=self.config.detection_threshold,
                    det_size=self.config.detection_size
                )
                self.status = ServiceStatus.READY
                self.initialization_error = None
                logger.info("FaceService initialized successfully")
                return

            except Exception as e:
                logger.error(f"Initialization attempt {attempt + 1}/{self.config.max_retries} failed: {str(e)}")
                if attempt < self.config.max_retries - 1:
                    time.sleep(self.config.retry_delay)
                else:
                    self.app = None
                    self.initialization_error = str(e)
                    self.status = ServiceStatus.ERROR

    def is_ready(self) -> bool:
        """Check if service is ready to process requests"""
        return self.status == ServiceStatus.READY and self.app is not None

    def get_status(self) -> Dict[str, Any]:
        """Get detailed service status"""
        return {
            "status": self.status.value,
            "model": self.config.model_name,
            "error": self.initialization_error,
        }

    def load_image(self, image_bytes: bytes) -> Optional[np.ndarray]:
        """
        Decode image bytes into an RGB array, shrinking very large photos.
        """
        if not image_bytes or len(image_bytes) < 100:
            logger.error("Image data too small")
            return None

        img = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            # OpenCV cannot read some formats (e.g. certain WebP/CMYK JPEGs)
            try:
                from PIL import Image
                pil_image = Image.open(io.BytesIO(image_bytes)).convert('RGB')
                img = cv2.cvtColor(np.array(pil_image), cv2.COLOR_RGB2BGR)
            except Exception as pil_error:
                logger.error(f"Could not decode image: {pil_error}")
                return None

        img_rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

        h, w = img_rgb.shape[:2]
        if max(h, w) > self.config.max_image_dimension:
            scale = self.config.max_image_dimension / max(h, w)
            img_rgb = cv2.resize(img_rgb, (int(w * scale), int(h * scale)))
            logger.debug(f"Resized image from {w}x{h}")

        return img_rgb

    def _analyze_face_quality(self, face, image_rgb: np.ndarray) -> Dict[str, Any]:
        """Reject faces that are too small, dark, bright or blurry to match reliably"""
        x1, y1, x2, y2 = [int(coord) for coord in face.bbox]
        h, w = image_rgb.shape[:2]
        x1, y1 = max(0, x1), max(0, y1)
        x2, y2 = min(w, x2), min(h, y2)

        if x2 <= x1 or y2 <= y1:
            return {'valid': False, 'reason': 'Invalid bounding box'}

        face_region = image_rgb[y1:y2, x1:x2]
        gray_face = cv2.cvtColor(face_region, cv2.COLOR_RGB2GRAY)

        face_height, face_width = face_region.shape[:2]
        if face_width < self.config.min_face_size or face_height < self.config.min_face_size:
            return {'valid': False, 'reason': f'Face too small ({face_width}x{face_height})'}

        brightness = float(np.mean(gray_face))
        if brightness < 40 or brightness > 220:
            return {'valid': False, 'reason': f'Poor brightness ({brightness:.1f})'}

        blur = float(cv2.Laplacian(gray_face, cv2.CV_64F).var())
        if blur < 50:
            return {'valid': False, 'reason': f'Face too blurry (score: {blur:.1f})'}

        return {'valid': True, 'brightness': brightness, 'blur_score': blur}

    def process_image(self, image_bytes: bytes) -> FaceDetectionResult:
        """
        Detect faces and extract one normalised embedding per face.
        """
        start_time = time.time()
        result = FaceDetectionResult(
            success=False,
            faces_detected=0,
            embeddings=[],
            bounding_boxes=[],
            face_qualities=[]
        )

        if not self.is_ready():
            result.error_message = "FaceService is not ready"
            return result

        image_rgb = self.load_image(image_bytes)
        if image_rgb is None:
            result.error_message = "Failed to load image"
            return result

        faces = self.app.get(image_rgb)
        result.faces_detected = len(faces)
        if not faces:
            result.error_message = "No face detected. Please ensure the face is clearly visible and well lit."
            return result

        for i, face in enumerate(faces):
            result.embeddings.append(face.normed_embedding.astype(float).tolist())

            x1, y1, x2, y2 = [int(coord) for coord in face.bbox]
            result.bounding_boxes.append({
                'index': i,
                'x1': x1, 'y1': y1, 'x2': x2, 'y2': y2,
                'confidence': float(getattr(face, 'det_score', 0.0))
            })

            if self.config.enable_quality_check:
                result.face_qualities.append(self._analyze_face_quality(face, image_rgb))
            else:
                result.face_qualities.append({'valid': True})

        result.success = True
        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(f"Processed image: {len(faces)} face(s) in {result.processing_time_ms:.1f}ms")
        return result


_face_service_instance: Optional[FaceService] = None


def get_face_service() -> FaceService:
    """
    Get or create the FaceService singleton. The model is loaded lazily the
    first time a caller needs it.
    """
    global _face_service_instance

    if _face_service_instance is None:
        settings = get_settings()
        _face_service_instance = FaceService(ServiceConfig(
            model_name=settings.face_model_name,
            model_cache_dir=settings.face_model_dir
        ))
    return _face_service_instance
