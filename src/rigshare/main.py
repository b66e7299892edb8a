from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .catalog import SQLiteComponentCatalog
from .config import ROOT, Settings, setup_logging
from .csv_catalog import import_users, rebuild_catalog
from .db import init_schema
from .engine import BuildEngine
from .errors import RigShareError
from .identity import UserDirectory
from .schemas import BuildCreate, BuildPatch, CopyRequest, Principal
from .store import SQLiteBuildStore

load_dotenv(ROOT / ".env")

logger = logging.getLogger(__name__)


def _bootstrap_db(settings: Settings) -> None:
    init_schema(settings.db_path)
    if settings.components_csv is not None:
        result = rebuild_catalog(settings.db_path, settings.components_csv)
        logger.info("catalog ready: %d components", result["rows_total"])
    if settings.users_csv is not None:
        import_users(settings.db_path, settings.users_csv)


def _request_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    _bootstrap_db(settings)

    store = SQLiteBuildStore(
        settings.db_path,
        timeout=settings.db_timeout_seconds,
        record_events=settings.build_events,
    )
    catalog = SQLiteComponentCatalog(settings.db_path, timeout=settings.db_timeout_seconds)
    users = UserDirectory(settings.db_path, timeout=settings.db_timeout_seconds)
    engine = BuildEngine(store, catalog)

    app = FastAPI(title="RigShare")
    app.state.settings = settings
    app.state.engine = engine
    app.state.users = users
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RigShareError)
    async def rigshare_error_handler(request: Request, exc: RigShareError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.kind)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "kind": "InvalidArgument",
                "message": "invalid request",
                "detail": _request_errors(exc),
            },
        )

    def current_principal(x_user_id: Optional[str] = Header(default=None)) -> Optional[Principal]:
        return users.authenticate(x_user_id)

    @app.get("/health")
    def health():
        ok = store.ping()
        return JSONResponse(
            status_code=200 if ok else 503,
            content={
                "status": "OK" if ok else "Service Unavailable",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "database": "connected" if ok else "disconnected",
            },
        )

    @app.get("/api/builds/my")
    def my_builds(
        page: int = 1,
        limit: int = 10,
        principal: Optional[Principal] = Depends(current_principal),
    ):
        result = engine.list_owned(principal, page, limit)
        return {"message": "builds fetched", "data": result.model_dump(by_alias=True, mode="json")}

    @app.get("/api/builds/public")
    def public_builds(
        page: int = 1,
        limit: int = 10,
        sort_by: str = Query(default="createdAt", alias="sortBy"),
        sort_order: str = Query(default="desc", alias="sortOrder"),
    ):
        result = engine.list_public(page, limit, sort_by, sort_order)
        return {"message": "public builds fetched", "data": result.model_dump(by_alias=True, mode="json")}

    @app.get("/api/builds/{build_id}")
    def get_build(build_id: str, principal: Optional[Principal] = Depends(current_principal)):
        build = engine.get_by_id(build_id, principal)
        return {"message": "build fetched", "data": build.model_dump(by_alias=True, mode="json")}

    @app.post("/api/builds", status_code=201)
    def create_build(payload: BuildCreate, principal: Optional[Principal] = Depends(current_principal)):
        build = engine.create(
            principal,
            payload.name,
            payload.selections,
            description=payload.description,
            is_public=payload.is_public,
        )
        return {"message": "build created", "data": build.model_dump(by_alias=True, mode="json")}

    @app.put("/api/builds/{build_id}")
    def update_build(
        build_id: str,
        payload: BuildPatch,
        principal: Optional[Principal] = Depends(current_principal),
    ):
        build = engine.update(build_id, principal, payload)
        return {"message": "build updated", "data": build.model_dump(by_alias=True, mode="json")}

    @app.delete("/api/builds/{build_id}")
    def delete_build(build_id: str, principal: Optional[Principal] = Depends(current_principal)):
        engine.delete(build_id, principal)
        return {"message": "build deleted"}

    @app.post("/api/builds/{build_id}/copy", status_code=201)
    def copy_build(
        build_id: str,
        payload: CopyRequest,
        principal: Optional[Principal] = Depends(current_principal),
    ):
        build = engine.copy(build_id, principal, payload.name)
        return {"message": "build copied", "data": build.model_dump(by_alias=True, mode="json")}

    @app.get("/api/metrics")
    def metrics():
        return engine.metrics()

    return app


app = create_app()
