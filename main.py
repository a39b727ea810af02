# main.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# ------------------------------------------------------------
# IMPORT ROUTER E COLLABORATORI
# ------------------------------------------------------------
# Core API pubblica (delivery, loader, prova di pagamento)
from scriptgate.api.routes import router as api_router

# Router Admin (publish, reconcile, comandi, audit)
from scriptgate.api import admin as admin_api

from scriptgate.api.deps import get_db
from scriptgate.core.config import Settings, get_settings
from scriptgate.core.errors import ServiceError
from scriptgate.core.security import JoseTokenVerifier
from scriptgate.db.session import build_session_factory
from scriptgate.services.audit import DbAuditLog
from scriptgate.services.notify import Notifier

logger = logging.getLogger("scriptgate")


# ------------------------------------------------------------
# CREAZIONE DELL'APPLICAZIONE FASTAPI
# ------------------------------------------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Crea e configura l'applicazione ScriptGate.

    La configurazione è risolta una sola volta qui e resa disponibile su
    app.state insieme ai collaboratori (DB, audit, notifiche, token).
    """
    settings = settings or get_settings()
    logging.getLogger("scriptgate").setLevel(settings.LOG_LEVEL.upper())

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "License server per la distribuzione di userscript: "
            "verifica del secret di sito, registrazione device, prove di "
            "pagamento riconciliate da admin e catalogo script versionato."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # --------------------------------------------------------
    # COLLABORATORI (iniettati, nessun singleton di modulo)
    # --------------------------------------------------------
    session_factory = build_session_factory(
        settings.DATABASE_URL, settings.DB_CONNECT_TIMEOUT_SECONDS
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.audit = DbAuditLog(session_factory)
    app.state.notifier = Notifier(settings)
    app.state.token_verifier = JoseTokenVerifier(
        settings.ADMIN_TOKEN_SECRET, [settings.ADMIN_TOKEN_ALGORITHM]
    )

    # --------------------------------------------------------
    # CORS
    # --------------------------------------------------------
    ALLOWED_ORIGINS = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1",
    ]

    extra = settings.CORS_EXTRA
    if extra:
        for item in [x.strip() for x in extra.split(",") if x.strip()]:
            if item not in ALLOWED_ORIGINS:
                ALLOWED_ORIGINS.append(item)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Script-Version", "X-Script-Checksum", "Content-Disposition"],
    )

    # --------------------------------------------------------
    # ERRORI APPLICATIVI → {success: false, message}
    # --------------------------------------------------------
    @app.exception_handler(ServiceError)
    async def _service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s", request.method, request.url.path, exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message},
        )

    # Body non valido: stessa forma degli altri errori, nessun dettaglio dello schema
    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("%s %s -> invalid_input (%d errori)", request.method, request.url.path, len(exc.errors()))
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Invalid input"},
        )

    # --------------------------------------------------------
    # ROUTES
    # --------------------------------------------------------
    app.include_router(api_router, prefix="")
    app.include_router(admin_api.router)

    # --------------------------------------------------------
    # ROOT DI SERVIZIO
    # --------------------------------------------------------
    @app.get("/", tags=["root"])
    def root():
        return {
            "status": "online",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    # --------------------------------------------------------
    # VERSION
    # --------------------------------------------------------
    @app.get("/api/version", tags=["system"])
    def version():
        """Versione dell'applicazione (gestita via env APP_VERSION)."""
        return {"version": settings.APP_VERSION}

    # --------------------------------------------------------
    # 🩺 HEALTHZ ENDPOINT (API + DB PING)
    # --------------------------------------------------------
    @app.get("/api/healthz", tags=["system"])
    def healthz(db: Session = Depends(get_db)):
        """
        Controlla sia l'API sia la reachability del DB.
        """
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("healthz: db non raggiungibile (%s)", e.__class__.__name__)
            # 503 = Service Unavailable
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "db": "error", "version": settings.APP_VERSION},
            )
        return {
            "status": "ok",
            "service": "scriptgate",
            "db": "ok",
            "version": settings.APP_VERSION,
        }

    return app


# ------------------------------------------------------------
# AVVIO LOCALE
# ------------------------------------------------------------
# uvicorn "main:create_app" --factory
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
