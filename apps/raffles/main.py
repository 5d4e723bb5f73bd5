from __future__ import annotations

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.raffles.api.http import router as http_router
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.infra.db import Database
from apps.raffles.infra.logging import setup_logging
from apps.raffles.infra.settings import get_settings

settings = get_settings()
setup_logging(settings.log_level)

database = Database(settings)


def build_app() -> FastAPI:
    app = FastAPI(title=settings.app_name)
    app.state.database = database
    app.include_router(http_router)

    @app.exception_handler(RaffleCoreError)
    async def handle_core_error(request: Request, exc: RaffleCoreError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await database.dispose()

    return app


app = build_app()


if __name__ == "__main__":
    uvicorn.run("apps.raffles.main:app", host="0.0.0.0", port=8000)
