"""Outreach drafting specialist: emails, LinkedIn messages, call scripts."""

import re

from copilot.agents.specialists.base import (
    SpecialistContext,
    SpecialistError,
    context_section,
    entity_summary,
    run_prompted_specialist,
)
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import SpecialistOutput

AGENT_ID = "draft_outreach"
LABEL = "Draft Outreach"

_CHANNELS = [
    ("linkedin", re.compile(r"\b(linkedin|inmail|connection note)\b", re.IGNORECASE)),
    ("call_script", re.compile(r"\b(call script|cold call|voicemail|phone)\b", re.IGNORECASE)),
]

TASK = """Draft outreach for this prospect.

{entity}
**Channel:** {channel}

User request:
{query}

Follow the rules in the system prompt.
Avoid placeholders unless required; if you must use placeholders, label them clearly.

If you produce telemetry, append:

<!--QB_JSON
{{"type":"draft_outreach","channel":"{channel}","personalization_fields":[],"assumptions":[]}}
-->{context}
"""


def detect_channel(text: str) -> str:
    """Outreach channel named in the request; email by default."""
    for channel, pattern in _CHANNELS:
        if pattern.search(text or ""):
            return channel
    return "email"


async def run(ctx: SpecialistContext) -> SpecialistOutput:
    query = ctx.user_input
    if not query:
        raise SpecialistError(AGENT_ID, "draft_outreach: empty user input")

    user = TASK.format(
        entity=entity_summary(ctx.entity_data),
        channel=detect_channel(query),
        query=query,
        context=context_section(ctx),
    )
    return await run_prompted_specialist(
        AGENT_ID, load_prompt("draft_outreach.md"), user, max_tokens=1600
    )
