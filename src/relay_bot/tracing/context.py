"""Event trace data models."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return datetime.now()


@dataclass
class TraceStep:
    """One stage of handling an event: classify, complete, send or link."""

    stage: str
    inputs: dict[str, Any]
    outputs: dict[str, Any]
    decision: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    model: str | None = None  # completion steps only

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceStep":
        return cls(
            stage=data["stage"],
            inputs=data.get("inputs", {}),
            outputs=data.get("outputs", {}),
            decision=data.get("decision", ""),
            details=data.get("details", {}),
            timestamp=_parse_time(data.get("timestamp")),
            model=data.get("model"),
        )


@dataclass
class EventTrace:
    """Record of one inbound event's path through a persona.

    ``final_state`` is the coordinator's terminal state (``linked``,
    ``ignored``, ``completion_failed``, ...); it stays None until the event
    has been fully handled.
    """

    persona: str
    room_id: str
    event_id: str
    trigger_text: str
    id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=datetime.now)
    steps: list[TraceStep] = field(default_factory=list)
    final_state: str | None = None
    reply: str | None = None

    def add_step(
        self,
        stage: str,
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        decision: str,
        details: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> None:
        self.steps.append(
            TraceStep(
                stage=stage,
                inputs=inputs,
                outputs=outputs,
                decision=decision,
                details=details or {},
                model=model,
            )
        )

    def step(self, stage: str) -> TraceStep | None:
        """The step recorded for a stage, if the event got that far."""
        return next((s for s in self.steps if s.stage == stage), None)

    @property
    def elapsed_ms(self) -> float | None:
        """Time from receipt to the last recorded step."""
        if not self.steps:
            return None
        return (self.steps[-1].timestamp - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "persona": self.persona,
            "room_id": self.room_id,
            "event_id": self.event_id,
            "trigger_text": self.trigger_text,
            "steps": [step.to_dict() for step in self.steps],
            "final_state": self.final_state,
            "reply": self.reply,
            "elapsed_ms": self.elapsed_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EventTrace":
        return cls(
            id=data["id"],
            started_at=_parse_time(data.get("started_at")),
            persona=data["persona"],
            room_id=data["room_id"],
            event_id=data["event_id"],
            trigger_text=data.get("trigger_text", ""),
            steps=[TraceStep.from_dict(s) for s in data.get("steps", [])],
            final_state=data.get("final_state"),
            reply=data.get("reply"),
        )
