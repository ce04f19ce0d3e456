"""Sales strategy specialist: key moves, risks and next milestone."""

from copilot.agents.specialists.base import (
    SpecialistContext,
    SpecialistError,
    context_section,
    entity_summary,
    run_prompted_specialist,
)
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import SpecialistOutput

AGENT_ID = "sales_strategy"
LABEL = "Sales Strategy"

TASK = """Provide sales strategy guidance for this prospect.

{entity}

User query: {query}

Write a natural, helpful assistant reply. Keep it actionable.

Then append:

<!--QB_JSON
{{"type":"sales_strategy","confidence":"High|Medium|Low","key_moves":[],"risks":[],"next_milestone":"","assumptions":[]}}
-->

Do NOT use code fences around QB_JSON.{context}
"""


async def run(ctx: SpecialistContext) -> SpecialistOutput:
    query = ctx.user_input
    if not query:
        raise SpecialistError(AGENT_ID, "sales_strategy: empty user input")

    user = TASK.format(
        entity=entity_summary(ctx.entity_data, include_notes=True),
        query=query,
        context=context_section(ctx),
    )
    return await run_prompted_specialist(
        AGENT_ID, load_prompt("sales_strategy.md"), user, max_tokens=1600
    )
