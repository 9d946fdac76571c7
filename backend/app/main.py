import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db import models  # noqa: F401
from app.db.base import Base
from app.db.session import engine
from app.realtime.socket_server import build_socket_app

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

api_app = FastAPI(title=settings.app_name, debug=settings.debug)

api_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api_app.include_router(api_router, prefix=settings.api_prefix)


@api_app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("%s started with presence backend %s", settings.app_name, settings.presence_backend)


app = build_socket_app(api_app)
