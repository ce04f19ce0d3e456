"""Pydantic schemas for chat threads, routing and turn results."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Role = Literal["user", "assistant"]
DecisionMode = Literal["rules", "judgment", "council", "escalation"]
SpecialistStatus = Literal["fulfilled", "rejected"]


# ============================================================================
# Persisted rows
# ============================================================================


class Thread(BaseModel):
    """A persisted conversation container."""
    id: str
    tenant_id: str
    owner_user_id: str | None = None
    account_id: str | None = None
    title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Message(BaseModel):
    """A single persisted turn."""
    id: str
    thread_id: str
    tenant_id: str
    role: Role
    content: str = ""
    created_at: datetime | None = None
    resolved_candidates: list[dict[str, Any]] | None = None

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: Any) -> str:
        return "assistant" if v == "assistant" else "user"

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: Any) -> str:
        return "" if v is None else str(v)


class Account(BaseModel):
    """CRM-like organization record."""
    id: str
    tenant_id: str
    name: str
    normalized_name: str
    metadata_json: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None

    @field_validator("metadata_json", mode="before")
    @classmethod
    def coerce_metadata(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}


class AccountCandidate(BaseModel):
    """Ranked account search hit."""
    id: str
    name: str
    score: float = 0.0


class KnowledgeHit(BaseModel):
    """Internal knowledge-base snippet."""
    id: str | None = None
    title: str | None = None
    content: str = ""
    updated_at: datetime | None = None
    rank: float | None = None


# ============================================================================
# LLM wire types
# ============================================================================


class ChatMessage(BaseModel):
    """Role/content pair handed to an LLM provider."""
    role: Role
    content: str


class CompletionResult(BaseModel):
    """Outcome of one completion call. Never raised, always returned."""
    ok: bool
    text: str = ""
    error: str | None = None


class Citation(BaseModel):
    """Flat, normalized research citation."""
    title: str = ""
    url: str = ""


class ResearchResult(BaseModel):
    """Outcome of one external research call."""
    ok: bool
    answer: str = ""
    citations: list[Citation] = Field(default_factory=list)
    error: str | None = None


class ResearchCacheEntry(BaseModel):
    """Cached research answer served within the TTL window."""
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    created_at: datetime | None = None


# ============================================================================
# Per-turn decisions
# ============================================================================


class RoutingDecision(BaseModel):
    """Which agents to call for this turn, and how authoritatively."""
    agents: list[str] = Field(default_factory=lambda: ["chat"])
    decision_mode: DecisionMode = "rules"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str = ""
    layer: str = "fallback"

    @property
    def specialists(self) -> list[str]:
        return [a for a in self.agents if a != "chat"]


class ResearchDecision(BaseModel):
    """Whether to run external research, and with which queries."""
    needed: bool = False
    queries: list[str] = Field(default_factory=list)
    reason: str = ""


class TurnDecision(BaseModel):
    """Combined output of the decision router."""
    routing: RoutingDecision
    research: ResearchDecision


# ============================================================================
# Specialists
# ============================================================================


class Telemetry(BaseModel):
    """Structured side-channel output from a specialist."""
    type: str | None = None
    alerts: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class SpecialistOutput(BaseModel):
    """What a specialist runner returns on success."""
    content: str
    telemetry: Telemetry | None = None


class SpecialistResult(BaseModel):
    """Settled result for one specialist in a turn."""
    agent_id: str
    label: str
    status: SpecialistStatus
    content: str = ""
    telemetry: Telemetry | None = None
    error: str | None = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "fulfilled"


# ============================================================================
# Entity resolution
# ============================================================================


class EntityResolution(BaseModel):
    """Outcome of entity resolution for a thread."""
    outcome: Literal["linked", "created", "ambiguous", "none", "skipped", "failed"]
    account_id: str | None = None
    account_name: str | None = None
    candidates: list[AccountCandidate] = Field(default_factory=list)
    reason: str = ""


# ============================================================================
# Turn outcome
# ============================================================================


class SpecialistSummary(BaseModel):
    """Per-specialist entry in the turn payload."""
    agent: str
    ok: bool
    error: str | None = None
    elapsed_ms: int = 0


class TurnResult(BaseModel):
    """Successful turn: the reply was synthesized and persisted."""
    ok: Literal[True] = True
    thread_id: str
    message_id: str | None = None
    reply: str
    route: str
    decision_mode: DecisionMode
    confidence: float
    reason: str
    used_research: bool = False
    used_knowledge: bool = False
    executed_agents: list[str] = Field(default_factory=list)
    specialist_results: list[SpecialistSummary] = Field(default_factory=list)
    research: ResearchDecision = Field(default_factory=ResearchDecision)
    entity_resolution: EntityResolution | None = None


class TurnFailure(BaseModel):
    """Failed turn: nothing was persisted for the assistant."""
    ok: Literal[False] = False
    kind: str
    message: str
    thread_id: str | None = None
