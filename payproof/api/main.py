"""
FastAPI Application — Payment-Proof Verification Agent.

Architecture:
  - PostgreSQL (prod) / SQLite (dev) para jobs, extrações, decisões e outbox
  - EasyOCR + Gemini vision em paralelo, fundidos por regras determinísticas
  - Worker pool asyncio com filas por prioridade
  - Outbox de eventos com entrega em background (log ou webhook)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from payproof.api.container import Container, build_container
from payproof.api.routes.extractions import router as extractions_router
from payproof.api.routes.proofs import router as proofs_router
from payproof.api.schemas.responses import HealthResponse, StatsResponse
from payproof.config.settings import get_settings
from payproof.infrastructure.events.publishers import WebhookEventPublisher

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(container: Container | None = None) -> FastAPI:
    """
    Cria o app. Sem container, ele é montado no startup a partir do Settings.
    """
    app = FastAPI(
        title="Payment-Proof Verification Agent",
        description="Reads payment screenshots, matches them to pending orders and decides approve / review / reject.",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.container = container

    # ── Startup / Shutdown ──
    @app.on_event("startup")
    async def startup():
        """Cria tabelas, sobe workers + entrega de eventos e recupera jobs pendentes."""
        if app.state.container is None:
            settings = get_settings()
            logging.basicConfig(
                level=settings.log_level,
                format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            )
            app.state.container = build_container(settings)
        c: Container = app.state.container

        c.db.init_db()
        c.dispatcher.start()
        c.delivery.start()

        recovered = c.store.unfinished_jobs()
        for job in recovered:
            await c.dispatcher.submit(job)
        if recovered:
            logger.info(f"Re-enqueued {len(recovered)} unfinished jobs")
        logger.info("Payment-Proof Verification Agent started")

    @app.on_event("shutdown")
    async def shutdown():
        """Drena a fila, faz o último flush do outbox e fecha conexões."""
        c: Container | None = app.state.container
        if c is None:
            return
        await c.dispatcher.shutdown(timeout=c.settings.shutdown_timeout_seconds)
        await c.delivery.stop()
        if isinstance(c.publisher, WebhookEventPublisher):
            c.publisher.close()
        c.db.dispose()
        logger.info("Payment-Proof Verification Agent stopped")

    app.include_router(proofs_router, prefix="/api/v1", tags=["Proofs"])
    app.include_router(extractions_router, prefix="/api/v1", tags=["Extractions"])

    # ── Stats ──
    @app.get("/api/v1/stats", response_model=StatsResponse)
    def get_stats(request: Request):
        """Estatísticas agregadas para dashboards."""
        return request.app.state.container.store.get_stats()

    # ── Health ──
    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        c: Container = request.app.state.container
        return HealthResponse(
            status="ok" if not c.dispatcher.closing else "shutting_down",
            version=VERSION,
            database="PostgreSQL" if c.db.dialect == "postgresql" else "SQLite",
            queue_depths=c.dispatcher.depths(),
            in_flight=c.dispatcher.in_flight,
            accepting_jobs=not c.dispatcher.closing,
            adapters=c.adapters_ready(),
        )

    return app


app = create_app()
