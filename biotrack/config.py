"""
Configuration settings for the BioTrack attendance service
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings, read from the environment (and .env)"""
    database_url: str
    db_echo: bool = False

    # Euclidean distance thresholds for client-supplied 128-d descriptors,
    # kept independent per call site
    login_match_threshold: float = 0.6
    kiosk_match_threshold: float = 0.3

    # Thresholds for the server's InsightFace embeddings. These are unit
    # vectors, so distance d and cosine similarity c relate as
    # d = sqrt(2 - 2c): 0.89 is c >= 0.60 (the model's usual same-person
    # cut-off) and 0.80 is c >= 0.68.
    face_login_match_threshold: float = 0.89
    face_kiosk_match_threshold: float = 0.8

    timeout_grace_minutes: int = 20
    excuse_review_window_days: int = 30
    allow_excuse_resubmission: bool = False

    face_model_name: str = "buffalo_s"
    face_model_dir: str = "./.insightface_models"
    preload_face_service: bool = True
    log_file: Optional[str] = "app.log"


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    db_host = os.getenv("DB_HOST", "localhost")
    db_port = os.getenv("DB_PORT", "3306")
    db_user = os.getenv("DB_USER", "root")
    db_password = os.getenv("DB_PASSWORD", "")
    db_name = os.getenv("DB_NAME", "biotrack")
    return f"mysql+aiomysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def load_settings() -> Settings:
    return Settings(
        database_url=_database_url(),
        db_echo=_env_bool("DB_ECHO", False),
        login_match_threshold=float(os.getenv("LOGIN_MATCH_THRESHOLD", "0.6")),
        kiosk_match_threshold=float(os.getenv("KIOSK_MATCH_THRESHOLD", "0.3")),
        face_login_match_threshold=float(os.getenv("FACE_LOGIN_MATCH_THRESHOLD", "0.89")),
        face_kiosk_match_threshold=float(os.getenv("FACE_KIOSK_MATCH_THRESHOLD", "0.8")),
        timeout_grace_minutes=int(os.getenv("TIMEOUT_GRACE_MINUTES", "20")),
        excuse_review_window_days=int(os.getenv("EXCUSE_REVIEW_WINDOW_DAYS", "30")),
        allow_excuse_resubmission=_env_bool("ALLOW_EXCUSE_RESUBMISSION", False),
        face_model_name=os.getenv("FACE_MODEL_NAME", "buffalo_s"),
        face_model_dir=os.getenv("FACE_MODEL_DIR", "./.insightface_models"),
        preload_face_service=_env_bool("PRELOAD_FACE_SERVICE", True),
        log_file=os.getenv("LOG_FILE", "app.log") or None,
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
