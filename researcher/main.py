from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from researcher.api.routes import research
from researcher.bootstrap import Components, build_components
from researcher.config import settings
from researcher.services import logger as log_service


def create_app(components: Components | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.components = components or build_components(settings)
        await app.state.components.start()
        log_service.log_event(event_type="app_started", message="Research service started")
        yield
        await app.state.components.stop()

    app = FastAPI(
        title="Researcher",
        description="Queued web research jobs with streamed progress",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(research.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "researcher"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("researcher.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
