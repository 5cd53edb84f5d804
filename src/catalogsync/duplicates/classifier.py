"""Duplicate classifiers — decide what kind of near-match a duplicate group is."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from catalogsync.duplicates.types import (
    DuplicateCategory,
    DuplicateClassification,
    MergeRecommendation,
)
from catalogsync.exceptions import ClassifierError

try:
    import openai
    from openai import AsyncOpenAI

    _HAS_OPENAI = True
except ImportError:  # pragma: no cover
    _HAS_OPENAI = False

if TYPE_CHECKING:
    from openai import AsyncOpenAI as AsyncOpenAIType

    from catalogsync.duplicates.types import DuplicateProduct


@runtime_checkable
class DuplicateClassifier(Protocol):
    """Classifies a group of near-duplicate products.

    Implementations raise :class:`ClassifierError` when they cannot produce
    a verdict; the detector downgrades that group to ``review_needed``.
    """

    async def classify(self, products: list[DuplicateProduct]) -> DuplicateClassification: ...


_SYSTEM_PROMPT = """\
You review product catalog entries that a similarity search flagged as near-duplicates.
Classify the group into exactly one category:
- real_duplicate: the same product described differently (abbreviations, word order, typos)
- size_variant: differs only in size, dimensions or capacity
- color_variant: differs only in color
- model_variant: differs in code, model or version
- description_variant: differs in extra details (with/without lid, accessories, etc.)
- review_needed: ambiguous, needs a human

Answer with a single JSON object and nothing else:
{"category": "<category>", "confidence": <number 0..1>, "reason": "<short explanation>",
 "differences": ["<difference>", ...], "recommendation": "merge | keep_both | review"}"""


def strip_code_fences(text: str) -> str:
    """Return the body of a fenced ```json block, or *text* unchanged."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    lines: list[str] = []
    in_block = False
    for line in text.splitlines():
        if line.startswith("```"):
            in_block = not in_block
            continue
        if in_block:
            lines.append(line)
    return "\n".join(lines)


def parse_classification(text: str) -> DuplicateClassification:
    """Parse a classifier reply into a :class:`DuplicateClassification`.

    Raises:
        ClassifierError: the reply is not JSON or misses or misnames a field.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        msg = f"Classifier reply is not JSON: {exc}"
        raise ClassifierError(msg) from exc
    if not isinstance(data, dict):
        msg = "Classifier reply is not a JSON object"
        raise ClassifierError(msg)

    try:
        category = DuplicateCategory(str(data["category"]).strip().lower())
        recommendation = MergeRecommendation(str(data["recommendation"]).strip().lower())
        confidence = float(data.get("confidence", 0.0))
    except (KeyError, ValueError, TypeError) as exc:
        msg = f"Classifier reply has a missing or invalid field: {exc}"
        raise ClassifierError(msg) from exc

    differences = data.get("differences") or []
    if not isinstance(differences, list):
        differences = [differences]
    return DuplicateClassification(
        category=category,
        confidence=min(max(confidence, 0.0), 1.0),
        reason=str(data.get("reason", "")),
        differences=[str(d) for d in differences],
        recommendation=recommendation,
    )


class OpenAIDuplicateClassifier:
    """Classifier backed by OpenAI chat completions in JSON mode.

    Requires the ``openai`` package::

        pip install catalogsync[openai]
    """

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        temperature: float = 0.1,
        max_retries: int = 2,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        if not _HAS_OPENAI:
            msg = (
                "openai is required for OpenAIDuplicateClassifier. "
                "Install it with: pip install catalogsync[openai]"
            )
            raise ImportError(msg)

        self._model = model
        self._temperature = temperature
        if client is not None:
            self._client: AsyncOpenAIType = client
            return

        resolved_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not resolved_key:
            msg = (
                "No OpenAI API key provided. Pass api_key= or set the "
                "OPENAI_API_KEY environment variable."
            )
            raise ValueError(msg)
        self._client = AsyncOpenAI(api_key=resolved_key, max_retries=max_retries, timeout=timeout)

    @property
    def model_name(self) -> str:
        return self._model

    async def classify(self, products: list[DuplicateProduct]) -> DuplicateClassification:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": _describe(products)},
                ],
                temperature=self._temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            msg = f"OpenAI classification failed: {exc}"
            raise ClassifierError(msg) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            msg = "OpenAI returned an empty classification"
            raise ClassifierError(msg)
        return parse_classification(content)

    async def close(self) -> None:
        await self._client.close()


def _describe(products: list[DuplicateProduct]) -> str:
    lines = ["Products:"]
    for i, product in enumerate(products, start=1):
        visible = {k: v for k, v in product.payload.items() if not k.startswith("_")}
        lines.append(f"{i}. id={product.id} {json.dumps(visible, ensure_ascii=False, default=str)}")
    return "\n".join(lines)
