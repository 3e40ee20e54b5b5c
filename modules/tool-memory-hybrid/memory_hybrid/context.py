"""Current-context summary: what an agent should know at the start of a turn."""

import logging
from typing import Optional

from .graph import KnowledgeGraph
from .models import Entity
from .records import MemoryRecords

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
ENTITY_OBSERVATIONS = 3
PROFILE_OBSERVATIONS = 5
OBSERVATION_PREVIEW = 60
RELATION_LIMIT = 10
USER_TYPES = ["User", "Person"]
AGENT_TYPES = ["AI Agent"]
AGENT_SELF_NAME = "I"


def _preview(text: str, length: int) -> str:
    return text if len(text) <= length else text[:length] + "..."


class ContextBuilder:
    """Renders recent memories and the most relevant entities as plain text.

    Sections, each skipped when empty:
    - Relevant Entities: most important entities, then ones named in recent memories
    - User Info / Agent Info: the top Person/User and "AI Agent" entities
    - Prominent Relations
    - Recent Memories
    """

    def __init__(
        self,
        records: MemoryRecords,
        graph: KnowledgeGraph,
        window_tokens: int = 2500,
        max_entities: int = 10,
        max_memories: int = 10,
    ):
        self.records = records
        self.graph = graph
        self.window_tokens = window_tokens
        self.max_entities = max_entities
        self.max_memories = max_memories

    def _relevant_entities(self, recent_text: str) -> list[Entity]:
        if not self.max_entities:
            return []
        important = self.graph.top_entities(self.max_entities)
        active = self.graph.entities_mentioned_in(recent_text, self.max_entities)
        seen = {entity.name for entity in important}
        return important + [entity for entity in active if entity.name not in seen]

    def _agent_entity(self) -> Optional[Entity]:
        found = self.graph.top_entities(1, types=AGENT_TYPES)
        return found[0] if found else self.graph.get_entity(AGENT_SELF_NAME)

    @staticmethod
    def _profile(title: str, entity: Entity) -> list[str]:
        lines = [f"=== {title} ===", f"Name: {entity.name} ({entity.type})"]
        observations = entity.observations[-PROFILE_OBSERVATIONS:][::-1]
        if observations:
            lines.append("Observations:")
            lines.extend(f"- {observation}" for observation in observations)
        return lines + [""]

    def build(self) -> str:
        recent = self.records.list_recent(self.max_memories) if self.max_memories else []
        lines = ["=== CURRENT CONTEXT ===", ""]

        entities = self._relevant_entities(" ".join(m.content for m in recent))
        if entities:
            lines.append("Relevant Entities:")
            for entity in entities:
                lines.append(f"- {entity.name} [{entity.type}]")
                for observation in entity.observations[-ENTITY_OBSERVATIONS:][::-1]:
                    lines.append(f"    * {_preview(observation, OBSERVATION_PREVIEW)}")
            lines.append("")

        users = self.graph.top_entities(1, types=USER_TYPES)
        if users:
            lines.extend(self._profile("USER INFO", users[0]))
        agent = self._agent_entity()
        if agent is not None:
            lines.extend(self._profile("AGENT INFO", agent))

        relations = self.graph.prominent_relations(RELATION_LIMIT)
        if relations:
            lines.append("Prominent Relations:")
            lines.extend(f"- {r.source} --[{r.relation}]--> {r.target}" for r in relations)
            lines.append("")

        lines.append("Recent Memories:")
        lines.extend(f"- {m.content} ({m.created_at.isoformat()})" for m in recent)

        context = "\n".join(lines) + "\n"
        limit = self.window_tokens * CHARS_PER_TOKEN
        if len(context) > limit:
            logger.debug("Context truncated from %d to %d chars", len(context), limit)
            context = context[:limit] + "... (truncated)"
        return context
