import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from biotrack.api.v1.attendance import router
from biotrack.api.v1.classes import class_router
from biotrack.api.v1.excuses import excuse_router
from biotrack.api.v1.identities import identity_router
from biotrack.config import get_settings
from biotrack.database import database
from biotrack.services.face_recognition import get_face_service

settings = get_settings()

handlers = [logging.StreamHandler(sys.stdout)]
if settings.log_file:
    handlers.append(logging.FileHandler(settings.log_file, encoding='utf-8'))

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=handlers
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    if await database.connect():
        await database.create_tables()
        logger.info("Database connected and tables created")
    else:
        logger.error("Database connection failed; requests will fail until it is available")

    if settings.preload_face_service:
        logger.info("Initializing face recognition service...")
        face_service = get_face_service()
        await run_in_threadpool(face_service.initialize)
        status_info = face_service.get_status()
        if face_service.is_ready():
            logger.info(f"Face service status: {status_info}")
        else:
            logger.warning(f"Face service not ready: {status_info}")

    logger.info("Application startup complete")
    yield

    logger.info("Shutting down application...")
    await database.disconnect()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="BioTrack Attendance API",
    description="Face-verified class attendance with schedule-gated time-in/time-out and excuse review",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(identity_router)
app.include_router(class_router)
app.include_router(router)
app.include_router(excuse_router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to BioTrack Attendance API",
        "version": "1.0.0",
        "endpoints": {
            "identities": "/identities",
            "classes": "/classes",
            "attendance": "/attendance",
            "excuses": "/excuses",
            "health": "/health",
            "face_service_status": "/attendance/health"
        }
    }


@app.get("/health")
async def health_check():
    db_status = await database.check_connection()
    face_status = get_face_service().get_status().get("status", "unknown")

    return {
        "status": "healthy" if db_status else "degraded",
        "database": "connected" if db_status else "disconnected",
        "face_service": face_status
    }


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) if str(exc) else "Unknown error"
        }
    )


if __name__ == "__main__":
    uvicorn.run("biotrack.main:app", host="0.0.0.0", port=8000, reload=True)
