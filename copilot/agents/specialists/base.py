"""Shared plumbing for specialist runners."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from copilot.agents.specialists.telemetry import extract_telemetry_block, normalize_telemetry
from copilot.core.conversation import last_user_text
from copilot.core.llm import complete
from copilot.core.schemas_chat import ChatMessage, SpecialistOutput


class SpecialistError(Exception):
    """A specialist produced no usable output."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(message)


@dataclass
class SpecialistContext:
    """
    Shared, already-augmented input for every specialist in a turn.

    Attributes:
        tenant_id: Tenant scope for knowledge lookups
        messages: Conversation history
        context_blocks: Knowledge, account memory and research blocks for this turn
        entity_data: Linked account facts (metadata plus name)
    """
    tenant_id: str
    messages: Sequence[ChatMessage]
    context_blocks: list[str] = field(default_factory=list)
    entity_data: dict[str, Any] = field(default_factory=dict)

    @property
    def user_input(self) -> str:
        return last_user_text(self.messages).strip()


def _champion_name(entity: dict[str, Any]) -> str | None:
    champion = entity.get("champion")
    if isinstance(champion, str) and champion.strip():
        return champion.strip()
    contacts = entity.get("champion_contacts")
    if isinstance(contacts, dict):
        primary = contacts.get("primary")
        if isinstance(primary, dict) and primary.get("name"):
            return str(primary["name"])
    return None


def entity_summary(entity: dict[str, Any], include_notes: bool = False) -> str:
    """Short markdown summary of the linked account."""
    lines = [
        f"**Account/Prospect:** {entity.get('name') or 'Unknown'}",
        f"**Type:** {entity.get('type') or entity.get('institution_type') or 'Unknown'}",
        f"**Champion:** {_champion_name(entity) or 'Not identified'}",
    ]
    if include_notes and entity.get("notes"):
        lines.append(f"**Notes:** {entity['notes']}")
    return "\n".join(lines)


def context_section(ctx: SpecialistContext) -> str:
    blocks = [b for b in ctx.context_blocks if b]
    if not blocks:
        return ""
    return "\n\nCONTEXT FOR THIS TURN:\n" + "\n\n".join(blocks)


async def run_prompted_specialist(
    agent_id: str,
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
) -> SpecialistOutput:
    """
    Run one specialist completion and split off its telemetry.

    Raises:
        SpecialistError: On provider failure or empty output
    """
    result = await complete(
        system_prompt,
        [ChatMessage(role="user", content=user_prompt)],
        max_tokens=max_tokens,
    )
    if not result.ok:
        raise SpecialistError(agent_id, result.error or "completion failed")

    raw = result.text.strip()
    if not raw:
        raise SpecialistError(agent_id, f"{agent_id} returned empty response")

    text, telemetry = extract_telemetry_block(raw)
    if not text:
        raise SpecialistError(agent_id, f"{agent_id} returned only telemetry")

    return SpecialistOutput(content=text, telemetry=normalize_telemetry(telemetry, agent_id))
