"""Question classifier: route on a model-chosen category key."""

import logging
from dataclasses import dataclass
from typing import Any

from flowcore.config import EngineConfig
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import stringify
from flowcore.llm.parsing import extract_json
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)

OUTPUT_KEYS = ("category", "confidence", "reasoning", "keywords", "urgency", "summary")


@dataclass
class Category:
    key: str
    label: str
    description: str = ""


def normalize_categories(raw: Any) -> list[Category]:
    """Categories may be given as plain keys or as {key, label, description}."""
    categories = []
    for item in raw or []:
        if isinstance(item, str):
            categories.append(Category(key=item, label=item))
        elif isinstance(item, dict) and item.get("key"):
            key = str(item["key"])
            categories.append(
                Category(
                    key=key,
                    label=item.get("label") or key,
                    description=item.get("description") or "",
                )
            )
    return categories


def build_classifier_prompt(text: str, categories: list[Category], instructions: str = "") -> str:
    lines = "\n".join(
        f"- {c.key}: {c.label} ({c.description or 'no description'})" for c in categories
    )
    extra = f"\n[Additional instructions]\n{instructions}\n" if instructions else ""
    return f"""You are an intent classification assistant.
{extra}
Analyse the user input and classify it as exactly one of these categories:

{lines}

If none fits and an "other" or "default" category exists, choose it;
otherwise choose the closest category.

Also extract keywords, judge urgency (low/medium/high) and write a one-sentence summary.

Respond strictly with JSON in this shape, without Markdown fences or other text:
{{
  "category": "category key (must be one of the above)",
  "confidence": 0.9,
  "reasoning": "why this category",
  "keywords": ["keyword1", "keyword2"],
  "urgency": "low",
  "summary": "one-sentence summary"
}}

User input: {text}"""


def match_category(candidate: Any, categories: list[Category]) -> str | None:
    """Exact key first, then case-insensitive."""
    if not isinstance(candidate, str):
        return None
    keys = [c.key for c in categories]
    if candidate in keys:
        return candidate
    lowered = candidate.strip().lower()
    for key in keys:
        if key.lower() == lowered:
            return key
    return None


@register_handler(NodeType.QUESTION_CLASSIFIER)
class QuestionClassifierHandler(NodeHandler):
    def default_timeout_ms(self, config: EngineConfig) -> int | None:
        return config.llm_timeout_ms * 2

    def handle_for(self, output: Any) -> str | None:
        if isinstance(output, dict):
            return output.get("category")
        return output if isinstance(output, str) else None

    async def execute(self, step: StepContext) -> StepOutput:
        llm = step.require_llm()
        data = step.data
        categories = normalize_categories(data.get("categories"))
        keys = [c.key for c in categories]
        max_attempts = int(data.get("maxAttempts") or step.config.classifier_max_attempts)

        if data.get("inputVariable"):
            text = stringify(step.resolve_variable(data["inputVariable"]))
        elif data.get("input") not in (None, ""):
            text = stringify(step.resolve(data["input"]))
        else:
            text = stringify(step.previous_output())

        base_prompt = build_classifier_prompt(
            text, categories, step.interpolate(data.get("instructions"))
        )

        parsed: dict[str, Any] = {}
        for attempt in range(1, max_attempts + 1):
            prompt = base_prompt
            if attempt > 1:
                prompt += (
                    "\n\n[System note]: the previous reply was not a valid classification. "
                    "Output clean, valid JSON only; the category field must be one of: "
                    f"{', '.join(keys)}"
                )

            response = await step.guard(llm.generate(prompt))
            candidate = extract_json(response.content)

            if not isinstance(candidate, dict) or not candidate.get("category"):
                if attempt < max_attempts:
                    logger.warning(
                        f"Classifier '{step.node_id}' reply not parseable "
                        f"(attempt {attempt}/{max_attempts}), retrying"
                    )
                    continue
                logger.warning(f"Classifier '{step.node_id}' giving up on JSON, using fallback")
                parsed = {
                    "category": keys[0] if keys else "unknown",
                    "confidence": 0,
                    "reasoning": "JSON parsing failed after retries",
                    "summary": response.content[:50],
                    "keywords": [],
                    "urgency": "low",
                }
                break

            parsed = candidate
            if not keys:
                break
            matched = match_category(parsed.get("category"), categories)
            if matched is not None:
                parsed["category"] = matched
                break
            logger.warning(
                f"Classifier '{step.node_id}' chose '{parsed.get('category')}', "
                f"not in [{', '.join(keys)}] (attempt {attempt}/{max_attempts})"
            )
            if attempt == max_attempts:
                parsed["category"] = keys[0]

        output = {key: parsed.get(key) for key in OUTPUT_KEYS}
        output["keywords"] = output["keywords"] or []
        category = output["category"]
        logger.info(f"🏷 Classifier '{step.node_id}' -> {category}")
        return StepOutput(output=output, handle=category)
