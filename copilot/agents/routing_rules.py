"""Deterministic routing heuristics.

Every predicate here is pure: same text in, same answer out. The routing
cascade is ``ROUTING_RULES``, evaluated in order, first match wins; the
LLM router only runs when none of them fire.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from copilot.core.conversation import last_user_text, render_transcript
from copilot.core.schemas_chat import ChatMessage, RoutingDecision

# ============================================================================
# Vocabulary
# ============================================================================

EVALUATION_CONTEXT_CUES = [
    "icp",
    "fit verdict",
    "not icp",
    "score",
    "tier",
    "tldr",
    "tl;dr",
    "prospect",
    "hospital",
    "data gaps",
    "critical",
    "confidence",
]

RESEARCH_CONTEXT_CUES = [
    "icp",
    "fit verdict",
    "tier",
    "score",
    "prospect",
    "hospital",
    "radiation oncology",
    "linac",
    "tps",
    "raystation",
    "eclipse",
    "pinnacle",
    "stakeholder",
    "buying committee",
]

FOLLOW_UP_PATTERNS = [
    "not sure",
    "how can we find out",
    "how do we find out",
    "how do i find out",
    "can we confirm",
    "how to confirm",
    "where to check",
    "what about",
    "ok",
    "okay",
    "thanks",
    "got it",
    "makes sense",
    "next",
    "continue",
]

EVALUATION_FOLLOW_UP_CUES = [
    "tps",
    "equipment",
    "volume",
    "cases",
    "tier",
    "score",
    "confidence",
    "data gap",
    "gaps",
    "disqual",
    "qualify",
    "qualification",
    "pursue",
    "target",
    "champion",
    "who should we talk to",
    "next question",
    "assumption",
    "re-score",
    "rescore",
]

NON_ENTITY_STARTS = [
    "how do",
    "can you",
    "what is",
    "what are",
    "help me",
    "explain",
    "write",
    "draft",
    "summarize",
    "make",
    "build",
    "fix",
    "debug",
]

NEGATIVE_TIER_CONTEXT = [
    "pricing tier",
    "plan tier",
    "subscription tier",
    "billing tier",
    "enterprise tier",
    "pro tier",
    "starter tier",
    "free tier",
    "tier list",
    "tiered pricing",
]

STRONG_EVALUATION_INTENTS = [
    "is this a fit",
    "is it a fit",
    "fit score",
    "score this",
    "score them",
    "qualify this account",
    "qualify this",
    "should we pursue",
    "should we go after",
    "good target",
    "ideal customer",
    "ideal client",
    "icp fit",
    "not icp",
]

EVALUATION_QUALIFIERS = ["fit", "score", "tier", "qualify", "pursue", "target", "prospect", "account"]

DRAFTING_STARTS = ["draft", "write", "rewrite", "polish", "compose", "reword", "edit"]

OUTREACH_OBJECTS = [
    "email",
    "e-mail",
    "follow-up",
    "follow up",
    "linkedin message",
    "inmail",
    "call script",
    "cold call",
    "outreach",
    "intro message",
    "voicemail",
]

CONTACT_CUES = [
    "names",
    "name of",
    "email address",
    "emails for",
    "contact info",
    "contacts",
    "who should i reach out",
    "who do i reach out",
    "who to reach out",
    "who can i reach out",
    "who should we contact",
    "linkedin profile",
    "decision maker",
    "director",
    "vp",
    "head of",
    "chief",
    "cmio",
    "cmo",
    "cio",
    "procurement",
    "purchasing",
    "technology assessment",
]

_URL = re.compile(r"(https?://|www\.)", re.IGNORECASE)
_LETTER = re.compile(r"[a-zA-ZÀ-ÿ]")
_ICP_WORD = re.compile(r"\bicp\b")

MAX_NAME_CHARS = 180
MAX_NAME_WORDS = 12
MAX_FOLLOW_UP_WORDS = 25


def _has_cue(text: str, cue: str) -> bool:
    """Substring match, except short cues must match as whole words."""
    if len(cue) <= 3:
        return re.search(rf"\b{re.escape(cue)}\b", text) is not None
    return cue in text


def has_any(text: str, cues: Sequence[str]) -> bool:
    return any(_has_cue(text, c) for c in cues)


# ============================================================================
# Predicates
# ============================================================================


def is_in_evaluation_context(
    messages: Sequence[ChatMessage],
    window: int = 10,
    cues: Sequence[str] = EVALUATION_CONTEXT_CUES,
) -> bool:
    """True if the recent window already talks about fit/scoring/tiers."""
    blob = render_transcript(messages, limit=window).lower()
    return has_any(blob, cues)


def looks_like_follow_up(text: str) -> bool:
    """Short, content-light follow-up that usually omits the entity name."""
    s = (text or "").strip().lower()
    if not s or len(s.split()) > MAX_FOLLOW_UP_WORDS:
        return False
    return has_any(s, FOLLOW_UP_PATTERNS)


def follow_up_is_evaluation_relevant(text: str) -> bool:
    """The follow-up itself is about qualification inputs, scoring or gaps."""
    s = (text or "").strip().lower()
    return bool(s) and has_any(s, EVALUATION_FOLLOW_UP_CUES)


def looks_like_account_name(
    text: str,
    max_punctuation: int = 4,
    punctuation: str = ".,;:",
) -> bool:
    """
    True if the text reads as a bare organization name.

    Rejects questions, URLs, instruction-style openers, more than 12 words,
    and punctuation-heavy sentences; requires at least one letter.
    """
    s = (text or "").strip()
    if not s or "?" in s or len(s) > MAX_NAME_CHARS:
        return False

    lowered = s.lower()
    if any(lowered.startswith(x) for x in NON_ENTITY_STARTS):
        return False
    if _URL.search(s):
        return False

    words = s.split()
    if not 1 <= len(words) <= MAX_NAME_WORDS:
        return False

    if sum(s.count(ch) for ch in punctuation) >= max_punctuation:
        return False

    return _LETTER.search(s) is not None


def wants_evaluation(text: str) -> bool:
    """Keyword intent for fit scoring / qualification, minus pricing-tier talk."""
    t = (text or "").strip().lower()
    if not t:
        return False
    if has_any(t, NEGATIVE_TIER_CONTEXT):
        return False
    if has_any(t, STRONG_EVALUATION_INTENTS):
        return True
    if _ICP_WORD.search(t):
        return has_any(t, EVALUATION_QUALIFIERS)
    if "tier" in t:
        return has_any(t, [q for q in EVALUATION_QUALIFIERS if q != "tier"])
    return False


def is_drafting_request(text: str) -> bool:
    """Request to write or rework copy."""
    t = (text or "").strip().lower()
    return any(t.startswith(x) for x in DRAFTING_STARTS)


def wants_outreach(text: str) -> bool:
    """Drafting request whose object is an outreach message."""
    t = (text or "").strip().lower()
    return is_drafting_request(t) and has_any(t, OUTREACH_OBJECTS)


def looks_like_contact_intent(text: str) -> bool:
    """Asks for names, contacts, roles or decision makers."""
    t = (text or "").strip().lower()
    return bool(t) and has_any(t, CONTACT_CUES)


# ============================================================================
# Routing cascade
# ============================================================================


@dataclass(frozen=True)
class RouteInput:
    """Everything a routing rule may look at."""
    messages: Sequence[ChatMessage]
    evaluation_agents: Sequence[str]

    @property
    def last_text(self) -> str:
        return last_user_text(self.messages)


@dataclass(frozen=True)
class RouteRule:
    """One predicate -> decision rule."""
    name: str
    applies: Callable[[RouteInput], bool]
    decide: Callable[[RouteInput], RoutingDecision]


def evaluation_mode(agent_count: int) -> str:
    """Decision mode matching the size of the evaluation stack."""
    if agent_count >= 3:
        return "council"
    if agent_count == 2:
        return "judgment"
    return "rules"


def _evaluation_route(confidence: float, reason: str, layer: str):
    def decide(inp: RouteInput) -> RoutingDecision:
        agents = list(inp.evaluation_agents) or ["icp_fit"]
        return RoutingDecision(
            agents=agents,
            decision_mode=evaluation_mode(len(agents)),
            confidence=confidence,
            reason=reason,
            layer=layer,
        )

    return decide


def _continuity_applies(inp: RouteInput) -> bool:
    last = inp.last_text
    return (
        is_in_evaluation_context(inp.messages)
        and looks_like_follow_up(last)
        and follow_up_is_evaluation_relevant(last)
    )


def _outreach_route(inp: RouteInput) -> RoutingDecision:
    return RoutingDecision(
        agents=["draft_outreach"],
        decision_mode="rules",
        confidence=0.8,
        reason="Keyword heuristic: user is asking for an outreach draft.",
        layer="keywords",
    )


ROUTING_RULES: list[RouteRule] = [
    RouteRule(
        name="continuity",
        applies=_continuity_applies,
        decide=_evaluation_route(
            0.9, "Continuity: evaluation-relevant follow-up within active evaluation context.",
            "continuity",
        ),
    ),
    RouteRule(
        name="account_name",
        applies=lambda inp: looks_like_account_name(inp.last_text),
        decide=_evaluation_route(
            0.9, "Heuristic: latest message looks like a target account name.", "account_name"
        ),
    ),
    RouteRule(
        name="evaluation_keywords",
        applies=lambda inp: wants_evaluation(inp.last_text),
        decide=_evaluation_route(
            0.82, "Keyword heuristic: user appears to be requesting fit scoring.", "keywords"
        ),
    ),
    RouteRule(
        name="outreach_keywords",
        applies=lambda inp: wants_outreach(inp.last_text),
        decide=_outreach_route,
    ),
]


def match_rules(inp: RouteInput, rules: Sequence[RouteRule] = ROUTING_RULES) -> RoutingDecision | None:
    """First matching rule's decision, or None if no rule fires."""
    for rule in rules:
        if rule.applies(inp):
            return rule.decide(inp)
    return None
