import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .context import AppContext, build_context
from .errors import GuestdeskError
from .routers import chat, documents

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    if context is None:
        settings = settings or Settings()
        logging.basicConfig(
            level=settings.LOG_LEVEL.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        context = build_context(settings)
    settings = context.settings

    app = FastAPI(title="Guestdesk", version="0.2.0")
    app.state.ctx = context
    app.add_middleware(CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(GuestdeskError)
    async def guestdesk_error(request: Request, exc: GuestdeskError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok", "llm": await context.generator.health_check()}

    app.include_router(documents.router, prefix="/v1")
    app.include_router(chat.router, prefix="/v1")
    return app
