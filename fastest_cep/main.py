# FastAPI gateway that races the configured CEP providers and returns the fastest answer.

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from fastest_cep.errors import AllProvidersFailedError, RaceTimeoutError, ValidationError
from fastest_cep.models import RaceOutcome, RaceStatus
from fastest_cep.providers import build_providers
from fastest_cep.racing import RaceCoordinator
from fastest_cep.settings import Settings, configure_logging


# ===========================
# Application Setup
# ===========================

def create_app(
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: application settings, loaded from config.yaml when omitted
        transport: optional httpx transport for the shared upstream client
    """
    settings = settings or Settings.from_file()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manages the lifecycle of the shared HTTP client and the race coordinator."""
        app.state.http_client = httpx.AsyncClient(
            timeout=settings.http_client_timeout,
            transport=transport,
        )
        app.state.coordinator = RaceCoordinator(
            build_providers(settings),
            race_timeout=settings.race_timeout,
        )
        logger.info(
            f"Initialized RaceCoordinator with providers "
            f"{[p.name for p in app.state.coordinator.providers]} "
            f"(race timeout {settings.race_timeout:.2f}s)"
        )
        yield
        await app.state.coordinator.aclose()
        await app.state.http_client.aclose()

    app = FastAPI(
        title="Fastest CEP Racing Gateway",
        description="Races several postal-code lookup services and returns the fastest successful answer.",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # --- API Endpoints ---
    @app.get("/")
    async def lookup_cep(request: Request, cep: Optional[str] = None) -> JSONResponse:
        """Main endpoint: races every provider for `cep` and returns the fastest address."""
        if cep is None or not cep.strip():
            raise ValidationError("Query parameter 'cep' is required")

        request_id = f"cep-{uuid.uuid4()}"
        coordinator: RaceCoordinator = request.app.state.coordinator
        client: httpx.AsyncClient = request.app.state.http_client

        outcome = await coordinator.race(client, cep.strip(), request_id=request_id)
        return render_outcome(outcome, request_id)

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"])
    async def unknown_path(path: str) -> None:
        """Anything outside the lookup route is a bad request."""
        raise ValidationError(f"Unsupported path: /{path}")

    return app


def render_outcome(outcome: RaceOutcome, request_id: str) -> JSONResponse:
    """Translate a race outcome into the HTTP response."""
    if outcome.status is RaceStatus.SUCCEEDED:
        return JSONResponse(
            content=outcome.winner.to_response(),
            headers={
                "X-Winner-API": outcome.winner.source,
                "X-Request-ID": request_id,
            },
        )
    if outcome.status is RaceStatus.TIMED_OUT:
        raise RaceTimeoutError()
    if outcome.failures:
        raise AllProvidersFailedError(f"All providers failed: {outcome.failure_details()}")
    raise AllProvidersFailedError("All providers failed: no providers are enabled")


# --- Main Execution Block ---
def run() -> None:
    import uvicorn

    settings = Settings.from_file()
    configure_logging(settings.log_level)
    app = create_app(settings)

    logger.info(f"Starting Fastest CEP Racing Gateway on port {settings.port}...")
    logger.info(f"Race timeout: {settings.race_timeout:.2f}s")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
