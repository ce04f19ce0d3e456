"""Specialist registry: agent id -> label and runner."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from copilot.agents.specialists import draft_outreach, icp_fit, sales_strategy, stakeholder_map
from copilot.agents.specialists.base import SpecialistContext
from copilot.core.schemas_chat import SpecialistOutput

Runner = Callable[[SpecialistContext], Awaitable[SpecialistOutput]]


@dataclass(frozen=True)
class SpecialistSpec:
    agent_id: str
    label: str
    run: Runner


SPECIALISTS: dict[str, SpecialistSpec] = {
    module.AGENT_ID: SpecialistSpec(module.AGENT_ID, module.LABEL, module.run)
    for module in (icp_fit, sales_strategy, stakeholder_map, draft_outreach)
}


def get_specialist(agent_id: str) -> SpecialistSpec | None:
    return SPECIALISTS.get(agent_id)


def label_for(agent_id: str) -> str:
    spec = SPECIALISTS.get(agent_id)
    return spec.label if spec else agent_id
