"""FastAPI debug server for browsing traces and live conversation state."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import RedirectResponse

from relay_bot.core.logging import get_session_stats

if TYPE_CHECKING:
    from relay_bot.core.conversation import Conversation
    from relay_bot.core.coordinator import BotCoordinator
    from relay_bot.core.names import NameRegistry
    from relay_bot.tracing import TraceStore

logger = logging.getLogger(__name__)


def _conversation_to_dict(conversation: Conversation) -> dict[str, Any]:
    return {
        "size": len(conversation),
        "messages": [
            {
                "id": m.id,
                "parent_id": m.parent_id,
                "role": m.role.value,
                "content": m.content,
            }
            for m in conversation.messages
        ],
    }


def create_app(
    coordinators: list[BotCoordinator],
    trace_store: TraceStore | None = None,
    name_registry: NameRegistry | None = None,
) -> FastAPI:
    """Create the debug server FastAPI app.

    Args:
        coordinators: The running personas.
        trace_store: The trace store for retrieving saved traces (optional).
        name_registry: The shared display name registry (optional).

    Returns:
        A configured FastAPI application.
    """
    app = FastAPI(title="Relay-Bot Debug")
    by_name = {c.name: c for c in coordinators}

    @app.get("/", response_class=RedirectResponse)
    async def root():
        """Redirect root to traces list."""
        return RedirectResponse(url="/traces", status_code=307)

    @app.get("/traces")
    async def traces_list(
        persona: str | None = None,
        room_id: str | None = None,
        limit: int = 50,
    ):
        """List recent traces with optional filtering."""
        if trace_store is None:
            raise HTTPException(status_code=503, detail="Tracing not enabled")
        traces = trace_store.recent(limit=limit, persona=persona, room_id=room_id)
        return {"traces": [t.to_dict() for t in traces]}

    @app.get("/traces/{trace_id}")
    async def trace_detail(trace_id: str):
        """Show a single trace with all its steps."""
        if trace_store is None:
            raise HTTPException(status_code=503, detail="Tracing not enabled")
        trace = trace_store.get(trace_id)
        if trace is None:
            raise HTTPException(status_code=404, detail="Trace not found")
        return trace.to_dict()

    @app.get("/personas")
    async def personas_list():
        """List running personas and their conversation counts."""
        return {
            "personas": [
                {
                    "name": c.name,
                    "user_id": c.persona.user_id,
                    "display_name": c.persona.display_name,
                    "answer_unaddressed": c.persona.answer_unaddressed,
                    "conversations": len(c.store),
                }
                for c in coordinators
            ],
            "known_names": name_registry.names() if name_registry else [],
        }

    @app.get("/personas/{name}/conversations")
    async def persona_conversations(name: str):
        """Dump a persona's tracked conversations, most recently touched first."""
        coordinator = by_name.get(name)
        if coordinator is None:
            raise HTTPException(status_code=404, detail="Persona not found")
        conversations = list(reversed(coordinator.store.conversations()))
        return {"conversations": [_conversation_to_dict(c) for c in conversations]}

    @app.get("/stats")
    async def stats():
        """Session counters, plus stored trace outcomes when tracing is on."""
        summary = get_session_stats().summary()
        if trace_store is not None:
            summary["trace_states"] = trace_store.state_counts()
        return summary

    return app
