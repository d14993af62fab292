# ============================================================================
# Scheduled Reports - Application Entry Point
# ============================================================================
# Run with:  uvicorn main:app
# Settings come from REPORTS_* environment variables (see config.py).
# ============================================================================

import logging
from typing import Optional

from fastapi import FastAPI

from scheduled_reports import (
    ReportingConfig,
    build_services,
    configure_logging,
    register_reporting_routes,
)

logger = logging.getLogger("reporting.main")


def create_app(config: Optional[ReportingConfig] = None, services=None) -> FastAPI:
    """Build the FastAPI app; ``services`` may be injected (tests)."""
    config = config or ReportingConfig()
    configure_logging(config.get("log_level"))
    services = services or build_services(config)

    app = FastAPI(title="Scheduled Reports")
    register_reporting_routes(app, services)

    @app.on_event("startup")
    async def _startup():
        if config.get("scheduler_enabled"):
            services.scheduler.start(user="system")
        else:
            logger.info("Scheduler disabled - not starting")

    @app.on_event("shutdown")
    async def _shutdown():
        services.scheduler.shutdown()

    @app.get("/health")
    async def health():
        return {"ok": True, "scheduler_running": services.scheduler.is_running()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
