"""Stakeholder mapping specialist: buying committee, first target, approval path."""

from typing import Any

from copilot.agents.specialists.base import (
    SpecialistContext,
    SpecialistError,
    context_section,
    entity_summary,
    run_prompted_specialist,
)
from copilot.core.knowledge import format_knowledge_block, retrieve_knowledge
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import SpecialistOutput

AGENT_ID = "stakeholder_map"
LABEL = "Stakeholder Map"

BASE_QUERY_TERMS = [
    "stakeholder role profiles decision authority",
    "buying committee",
    "budget approval path",
]
MAX_QUERY_CHARS = 600
NO_KNOWLEDGE = "[Knowledge Base]\n(no relevant knowledge base items)"

TASK = """Given the user's request, produce a stakeholder map for this account.

{entity}

User query: {query}

[Deal Context]
{deal_context}

Then append:

<!--QB_JSON
{{"type":"stakeholder_map","primary_stakeholder":"","recommended_stakeholders":[],"avoid_stakeholders":[],"budget_approval_path":[],"suggested_questions":[],"confidence":"High|Medium|Low"}}
-->

Do NOT use code fences around QB_JSON.{context}
"""


def budget_band(amount: Any) -> str | None:
    """Bucket an estimated deal size into an approval band."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if value < 50_000:
        return "<50K"
    if value < 250_000:
        return "50-250K"
    if value < 1_000_000:
        return "250K-1M"
    return ">1M"


def deal_context(entity: dict[str, Any]) -> dict[str, str]:
    """Pull the mapping-relevant facts out of account metadata."""
    out: dict[str, str] = {}
    if entity.get("product_category"):
        out["Product Type"] = str(entity["product_category"])
    if entity.get("therapy_area") or entity.get("department"):
        out["Therapy Area"] = str(entity.get("therapy_area") or entity.get("department"))
    if entity.get("institution_type"):
        out["Institution"] = str(entity["institution_type"])
    if entity.get("contact_stage"):
        out["Sales Context"] = str(entity["contact_stage"])
    band = budget_band(entity.get("estimated_deal_size"))
    if band:
        out["Budget"] = band
    return out


def knowledge_query(context: dict[str, str]) -> str:
    """One composite lookup instead of one per facet."""
    terms = list(BASE_QUERY_TERMS)
    if "Product Type" in context:
        terms.append(f"{context['Product Type']} stakeholders")
    if "Therapy Area" in context:
        terms.append(f"{context['Therapy Area']} department stakeholders")
    if "Institution" in context:
        terms.append(f"{context['Institution']} approval authority")
    if "Budget" in context:
        terms.append(f"deal size {context['Budget']} approvals")
    return " ".join(dict.fromkeys(t.strip() for t in terms if t.strip()))[:MAX_QUERY_CHARS]


async def run(ctx: SpecialistContext) -> SpecialistOutput:
    query = ctx.user_input
    if not query:
        raise SpecialistError(AGENT_ID, "stakeholder_map: empty user input")

    facts = deal_context(ctx.entity_data)
    hits = await retrieve_knowledge(ctx.tenant_id, knowledge_query(facts))

    system = f"{load_prompt('stakeholder_map.md')}\n\n{format_knowledge_block(hits) or NO_KNOWLEDGE}"
    user = TASK.format(
        entity=entity_summary(ctx.entity_data),
        query=query,
        deal_context="\n".join(f"{k}: {v}" for k, v in facts.items()) or "No context provided",
        context=context_section(ctx),
    )
    return await run_prompted_specialist(AGENT_ID, system, user, max_tokens=1800)
