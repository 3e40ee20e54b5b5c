"""Entity/relation extraction strategies.

The strategy is chosen once, from settings, when the store opens:

    passive  - extracts nothing
    llm      - asks an OpenAI chat model for JSON entities and relations

A comma-separated list combines several strategies.
"""

import json
import logging
import os
from typing import Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from .config import MemorySettings

logger = logging.getLogger(__name__)

MAX_EXTRACTION_INPUT = 4000

EXTRACTION_PROMPT = """Extract entities and relations from the text.
Also rate the IMPORTANCE of this memory from 0.0 (trivial) to 1.0 (vital).
Return JSON only:
{
  "importance": 0.5,
  "entities": [{"name": "Name", "type": "Person", "observations": ["fact1"]}],
  "relations": [{"source": "EntityA", "target": "EntityB", "relation": "knows"}]
}"""


class ExtractedEntity(BaseModel):
    name: str
    type: str = "Unknown"
    observations: list[str] = []


class ExtractedRelation(BaseModel):
    source: str
    target: str
    relation: str


class ExtractionResult(BaseModel):
    """Candidate graph data found in one piece of text. Best-effort, noisy."""

    entities: list[ExtractedEntity] = []
    relations: list[ExtractedRelation] = []
    importance: Optional[float] = Field(default=None, ge=0, le=1)

    def is_empty(self) -> bool:
        return not self.entities and not self.relations and self.importance is None

    def entity_names(self) -> list[str]:
        names: list[str] = []
        for entity in self.entities:
            if entity.name not in names:
                names.append(entity.name)
        return names


@runtime_checkable
class EntityExtractor(Protocol):
    async def extract(self, text: str) -> ExtractionResult: ...


class PassiveExtractor:
    """Extracts nothing; graph data comes only from explicit calls."""

    async def extract(self, text: str) -> ExtractionResult:
        return ExtractionResult()


class LlmExtractor:
    """Extraction through an OpenAI chat model in JSON mode.

    API errors propagate; the background runner logs and drops them.
    Malformed model output yields an empty result.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        if client is None:
            final_api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not final_api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                    "or pass api_key parameter."
                )
            client = AsyncOpenAI(api_key=final_api_key)
        self.client = client

    async def extract(self, text: str) -> ExtractionResult:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": EXTRACTION_PROMPT},
                {"role": "user", "content": text[:MAX_EXTRACTION_INPUT]},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )
        return parse_extraction(response.choices[0].message.content or "")


def parse_extraction(raw: str) -> ExtractionResult:
    """Parse model output; anything unusable is skipped with a warning."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Extractor returned non-JSON output: %r", raw[:80])
        return ExtractionResult()
    if not isinstance(data, dict):
        return ExtractionResult()

    entities = []
    for item in data.get("entities") or []:
        try:
            entity = ExtractedEntity.model_validate(item)
        except ValidationError:
            logger.warning("Skipping malformed entity: %r", item)
            continue
        if entity.name.strip():
            entities.append(entity)

    relations = []
    for item in data.get("relations") or []:
        try:
            relations.append(ExtractedRelation.model_validate(item))
        except ValidationError:
            logger.warning("Skipping malformed relation: %r", item)

    importance = data.get("importance")
    if not isinstance(importance, (int, float)) or not 0 <= importance <= 1:
        importance = None

    return ExtractionResult(entities=entities, relations=relations, importance=importance)


class CompositeExtractor:
    """Runs several extractors and merges their results in order.

    The first reported importance wins.
    """

    def __init__(self, extractors: list[EntityExtractor]):
        self.extractors = extractors

    async def extract(self, text: str) -> ExtractionResult:
        merged = ExtractionResult()
        for extractor in self.extractors:
            result = await extractor.extract(text)
            merged.entities.extend(result.entities)
            merged.relations.extend(result.relations)
            if merged.importance is None:
                merged.importance = result.importance
        return merged


def create_extractor(settings: MemorySettings, api_key: Optional[str] = None) -> EntityExtractor:
    """Build the configured extractor. Unknown strategy names are ignored."""
    extractors: list[EntityExtractor] = []
    for strategy in settings.extraction_strategies:
        if strategy == "llm":
            extractors.append(LlmExtractor(model=settings.extraction_model, api_key=api_key))
        elif strategy != "passive":
            logger.warning("Unknown extraction strategy '%s' ignored", strategy)

    if not extractors:
        return PassiveExtractor()
    if len(extractors) == 1:
        return extractors[0]
    return CompositeExtractor(extractors)
