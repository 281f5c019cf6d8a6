from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from combosim.api.routes import router as api_router
from combosim.core.config import Settings
from combosim.core.logging_config import setup_logging
from combosim.services.session import SimulationSession
from combosim.services.sim_runner import InMemorySimulationRunner


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        app.state.runner = InMemorySimulationRunner(SimulationSession(settings))
        yield
        app.state.runner.close()

    app = FastAPI(title="Combo Probability Simulator", version="0.1.0", lifespan=lifespan)

    # Allow local dev frontends to call the API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["system"])
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("combosim.main:app", host="0.0.0.0", port=8000, reload=True)
