"""
FastAPI server for Project Vanguard
Exposes the squad command pipeline over HTTP for a game client.
"""

import os
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv

# Load .env BEFORE any imports that might read env vars
load_dotenv()

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from vanguard.errors import ExternalServiceError, SchemaValidationError
from vanguard.game_logic.tick_loop import Sandbox, build_sandbox


class CommandRequest(BaseModel):
    """Natural-language order for one or more units."""
    command: str
    units: List[str] = Field(default_factory=list)


class TickRequest(BaseModel):
    ticks: int = Field(default=1, ge=1, le=1000)
    delta_ms: Optional[int] = Field(default=None, ge=0)


class InterruptRequest(BaseModel):
    reason: str = "player"


def create_app(sandbox: Optional[Sandbox] = None) -> FastAPI:
    """
    Build the HTTP app around one sandbox.

    Args:
        sandbox: Pipeline to serve (default: build_sandbox() from env)
    """
    sandbox = sandbox or build_sandbox()
    world = sandbox.world

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        sandbox.shutdown()

    app = FastAPI(title="Project Vanguard API", lifespan=lifespan)
    app.state.sandbox = sandbox

    # Allow the game client to connect
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/test")
    def test_connection():
        """Test endpoint for client connection."""
        return {
            "status": "ok",
            "message": "Backend is running",
            "provider": sandbox.client.provider_name,
            "key_source": sandbox.client.key_source,
            "time_ms": int(world.time_ms),
        }

    @app.post("/command")
    def submit_command(request: CommandRequest):
        """Queue an order. Results arrive as events on later ticks."""
        units = request.units or [u.unit_id for u in world.get_player_units() if not u.is_dead()]
        request_id = sandbox.orchestrator.process_command(request.command, units)
        if request_id is None:
            return {"success": False, "message": sandbox.orchestrator.last_rejection, "request_id": None}
        return {"success": True, "request_id": request_id, "units": units}

    @app.post("/preview")
    def preview_command(request: CommandRequest):
        """Show what the generator would order, without executing it."""
        units = request.units or [u.unit_id for u in world.get_player_units() if not u.is_dead()]
        try:
            return {"success": True, "response": sandbox.orchestrator.preview(request.command, units)}
        except SchemaValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ExternalServiceError as e:
            raise HTTPException(status_code=502, detail=e.reason)

    @app.post("/tick")
    def advance(request: TickRequest):
        """Advance the simulation. Returns every event the ticks produced."""
        # Collected directly; a long run can outgrow the log's bounded history
        collected = []
        listener = collected.append
        sandbox.events.subscribe(listener)
        try:
            summary = sandbox.loop.run(request.ticks, request.delta_ms)
        finally:
            sandbox.events.unsubscribe(listener)
        summary["events"] = [e.to_dict() for e in collected]
        return summary

    @app.get("/status")
    def get_status():
        """World state plus pipeline counters."""
        return {
            "world": world.to_dict(),
            "engine": sandbox.engine.get_statistics(),
            "orchestrator": sandbox.orchestrator.get_statistics(),
            "config": sandbox.config.to_dict(),
        }

    @app.get("/plans")
    def get_plans(history: bool = False):
        """Active plans, and optionally recently finished ones."""
        result = {
            "active": [sandbox.engine.get_plan(uid).to_dict()
                       for uid in sandbox.engine.active_unit_ids()],
        }
        if history:
            result["finished"] = [plan.to_dict() for plan in sandbox.engine.plan_history]
        return result

    @app.get("/events")
    def get_events(since: int = 0):
        """Events after a sequence number (0 = everything retained)."""
        return {
            "last_sequence": sandbox.events.last_sequence,
            "events": [e.to_dict() for e in sandbox.events.since(since)],
        }

    @app.post("/interrupt/{unit_id}")
    def interrupt(unit_id: str, request: Optional[InterruptRequest] = None):
        """Interrupt a unit's active plan."""
        if world.get_unit(unit_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown unit: {unit_id}")
        reason = request.reason if request else "player"
        interrupted = sandbox.engine.interrupt_plan(unit_id, reason)
        return {"success": interrupted, "unit_id": unit_id}

    @app.post("/interrupt_all")
    def interrupt_all(request: Optional[InterruptRequest] = None):
        reason = request.reason if request else "player"
        return {"interrupted": sandbox.engine.interrupt_all(reason)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("VANGUARD_HOST", "127.0.0.1")
    port = int(os.getenv("VANGUARD_PORT", "8005"))

    print("=" * 60)
    print("PROJECT VANGUARD - Server Starting")
    print("=" * 60)
    print(f"LLM_MODE: {app.state.sandbox.client.provider_name}")
    print(f"Units: {', '.join(app.state.sandbox.world.units)}")
    print(f"[*] Server: http://{host}:{port}")
    print(f"[*] API Docs: http://{host}:{port}/docs")
    print("=" * 60)

    uvicorn.run(app, host=host, port=port)
