from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from appointment_agent.logging.flight_recorder import register_log_middleware
from appointment_agent.routes import chat, health, ws
from appointment_agent.services.orchestrator import AgentOrchestrator, build_orchestrator


def create_app(orchestrator: Optional[AgentOrchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Let queued confirmations go out before the process exits
        await app.state.orchestrator.notifier.drain()

    app = FastAPI(title="Appointment Agent", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator or build_orchestrator()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_log_middleware(app)

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(chat.router, prefix="/api/agent", tags=["agent"])
    app.include_router(ws.router, tags=["realtime"])

    return app


app = create_app()
