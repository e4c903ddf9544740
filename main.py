# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
import logging

from app.api import routes_chat
from app.core.config import settings
from app.services.chat_service import get_chat_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app():
    app = FastAPI(title=settings.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL, "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_chat.router, prefix="/api")
    app.include_router(routes_chat.downloads_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "env": settings.ENV}

    @app.on_event("startup")
    def on_startup():
        Path(settings.DOWNLOADS_DIR).mkdir(exist_ok=True, parents=True)
        # builds the session store; the SQL backend creates its tables here
        get_chat_service()
        logger.info("%s started (session backend: %s)", settings.APP_NAME, settings.SESSION_BACKEND)

    return app


app = create_app()
