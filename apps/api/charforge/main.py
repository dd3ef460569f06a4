from __future__ import annotations

from typing import Any, Dict, Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from charforge.core.db import db_health, init_db, make_engine
from charforge.core.errors import CharForgeError
from charforge.core.observability import configure_logging, emit
from charforge.core.settings import Settings, load_settings
from charforge.core.storage import storage_health
from charforge.modules.backups.router import router as backups_router
from charforge.modules.backups.service import BackupService
from charforge.modules.characters.router import router as characters_router
from charforge.modules.characters.service import CharacterStore
from charforge.modules.exports.router import router as exports_router
from charforge.modules.generation.cache import GenerationCache
from charforge.modules.generation.providers import get_provider
from charforge.modules.generation.router import router as generation_router
from charforge.modules.generation.service import CharacterGenerator
from charforge.modules.portraits.router import router as portraits_router
from charforge.modules.portraits.service import PortraitService


# Contract locks:
# - /health keys: status, version, db, storage, provider, last_error_summary
# - X-Request-Id in/out (missing -> generated; always echoed back; also on errors)
# - Error envelope keys: error, message, request_id, details
def _err_envelope(error: str, message: str, request_id: Optional[str], details: Any, status_code: int):
    headers = {}
    if request_id:
        headers["X-Request-Id"] = request_id
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "request_id": request_id,
            "details": details,
        },
        headers=headers,
    )


def _install_observability(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):
        rid = request.headers.get("X-Request-Id") or uuid.uuid4().hex.upper()
        request.state.request_id = rid
        emit("info", "http.request.start", f"{request.method} {request.url.path}", rid, __name__)
        try:
            resp = await call_next(request)
        except Exception as e:
            emit("error", "http.request.exception", str(e), rid, __name__)
            raise
        resp.headers["X-Request-Id"] = rid
        emit("info", "http.request.end", f"{request.method} {request.url.path} -> {getattr(resp,'status_code',None)}", rid, __name__)
        return resp

    @app.exception_handler(CharForgeError)
    async def _domain_exc_handler(request: Request, exc: CharForgeError):
        rid = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            app.state.last_error_summary = f"{exc.code}: {exc.message}"
        return _err_envelope(exc.code, exc.message, rid, exc.details, exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("http_error", str(exc.detail), rid, {"status_code": exc.status_code}, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc_handler(request: Request, exc: RequestValidationError):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("validation_error", "request validation failed", rid, exc.errors(), 422)

    @app.exception_handler(Exception)
    async def _unhandled_exc_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", None)
        app.state.last_error_summary = f"internal_error: {type(exc).__name__}"
        return _err_envelope("internal_error", "internal server error", rid, {"type": type(exc).__name__}, 500)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[CharacterStore] = None,
    generator: Optional[CharacterGenerator] = None,
    portraits: Optional[PortraitService] = None,
) -> FastAPI:
    """
    Build the API. Anything not passed in is constructed from settings, which
    are loaded from the environment when omitted (ConfigError aborts startup).
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    if store is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        store = CharacterStore(engine)

    if generator is None:
        cache = GenerationCache() if settings.generation_cache_enabled else None
        generator = CharacterGenerator(get_provider(settings), cache=cache, timeout_s=settings.generation_timeout_s)

    if portraits is None:
        portraits = PortraitService(
            storage_root=settings.storage_root,
            base_url=settings.pollinations_image_url,
            model=settings.portrait_model,
            timeout_s=settings.portrait_timeout_s,
            enabled=settings.portraits_enabled,
        )

    app = FastAPI(title="CharForge API", version=settings.app_version)
    app.state.settings = settings
    app.state.store = store
    app.state.generator = generator
    app.state.portraits = portraits
    app.state.backups = BackupService(store, settings.exports_root)
    app.state.last_error_summary = None

    _install_observability(app)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        db = db_health(store.engine, settings.database_url)
        storage = storage_health(settings.storage_root)
        ok = db.get("status") == "ok" and storage.get("status") == "ok"
        return {
            "status": "ok" if ok else "degraded",
            "version": settings.app_version,
            "db": db,
            "storage": storage,
            "provider": {
                "name": getattr(generator.provider, "name", "unknown"),
                "cache": generator.cache is not None,
                "portraits": portraits.enabled,
            },
            "last_error_summary": app.state.last_error_summary,
        }

    app.include_router(characters_router)
    app.include_router(generation_router)
    app.include_router(exports_router)
    app.include_router(portraits_router)
    app.include_router(backups_router)

    emit("info", "app.started", f"charforge {settings.app_version}", module=__name__, provider=settings.generation_provider)
    return app
