"""ICP fit specialist: tiered fit verdict grounded in the ICP knowledge bundle."""

import asyncio

from copilot.agents.specialists.base import (
    SpecialistContext,
    SpecialistError,
    context_section,
    entity_summary,
    run_prompted_specialist,
)
from copilot.core.knowledge import format_knowledge_block, retrieve_knowledge
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import KnowledgeHit, SpecialistOutput

AGENT_ID = "icp_fit"
LABEL = "ICP Fit"

KNOWLEDGE_QUERIES = ("ICP framework", "disqualifier", "example")
KNOWLEDGE_LIMIT = 8

TASK = """Assess ICP fit for this prospect.

{entity}

User query: {query}

Write a natural, helpful assistant reply.

Required sections (in this order):
1) VERDICT: Tier 1/2/3 or Not ICP (bold the verdict)
2) SCORE: X/100 points
3) WHY (3-6 bullets max, concrete)
4) DATA GAPS (0-4 bullets, labeled CRITICAL/HIGH/MEDIUM/LOW)
5) TL;DR (one sentence)
6) One next question to move qualification forward

Then append:

<!--QB_JSON
{{"type":"icp_fit","score":0-100,"tier":1|2|3,"tier_label":"Strategic Target|Qualified Prospect|Lower Priority|Not ICP","confidence":"High|Medium|Low","critical_gaps":[],"suggested_questions":[],"disqualified":false,"disqualifier_reason":null}}
-->

Rules:
- Keep it concise (150-250 words).
- Do NOT use code fences around QB_JSON.
- If installed equipment is unknown, flag it as a CRITICAL gap.{context}
"""


async def load_icp_bundle(tenant_id: str) -> list[KnowledgeHit]:
    """Framework, disqualifier and example lookups, run concurrently. Never raises."""
    results = await asyncio.gather(
        *(retrieve_knowledge(tenant_id, q, limit=KNOWLEDGE_LIMIT) for q in KNOWLEDGE_QUERIES)
    )

    seen: set[str] = set()
    bundle: list[KnowledgeHit] = []
    for hits in results:
        for hit in hits:
            key = hit.id or f"{hit.title}:{hit.content[:40]}"
            if key not in seen:
                seen.add(key)
                bundle.append(hit)
    return bundle


async def run(ctx: SpecialistContext) -> SpecialistOutput:
    query = ctx.user_input
    if not query:
        raise SpecialistError(AGENT_ID, "icp_fit: empty user input")

    bundle = await load_icp_bundle(ctx.tenant_id)
    system = (
        f"{load_prompt('icp_fit.md')}\n\nBelow is the Knowledge Base context:\n\n"
        f"{format_knowledge_block(bundle) or '(No relevant knowledge base items found.)'}"
    )

    user = TASK.format(
        entity=entity_summary(ctx.entity_data),
        query=query,
        context=context_section(ctx),
    )
    return await run_prompted_specialist(AGENT_ID, system, user, max_tokens=2000)
