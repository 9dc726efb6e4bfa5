import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from biotrack.core.exceptions import AttendanceError

logger = logging.getLogger(__name__)


def http_error(exc: AttendanceError) -> HTTPException:
    """Engine rejection -> HTTP error carrying its structured detail"""
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def database_unavailable(e: SQLAlchemyError, operation: str) -> HTTPException:
    logger.error(f"Database error during {operation}: {str(e)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Database service temporarily unavailable"
    )
