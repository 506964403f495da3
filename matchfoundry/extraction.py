"""Turn a founder's weekly update into structured needs and learnings.

The LLM path uses the OpenAI Responses API with structured outputs; when no API
key is configured, or the call keeps failing, a keyword heuristic is used
instead. Either way the result holds at most 3 needs and 3 learnings.
"""

from __future__ import annotations

import json
import os
import re
import time
from typing import Any, List, Optional

from .config import (
    CATEGORY_KEYWORDS,
    CATEGORY_OPTIONS,
    DEFAULT_OPENAI_MODEL,
    MAX_EXTRACTED_ITEMS,
    NEED_MARKERS,
)
from .data_models import ExtractedItem, ExtractionResult, LLMExtraction
from .errors import ValidationError

SYSTEM_PROMPT = (
    "You extract startup founder weekly updates into 'needs' and 'learnings'. "
    "Each need is something they want help with. Each learning is something they can offer others."
)

_SENTENCE_SPLIT = re.compile(r"[.\n\r]+")


def infer_category(text: str) -> str:
    """First category whose keyword appears in the text, else 'other'."""
    lower = text.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in lower for k in keywords):
            return category
    return "other"


def heuristic_extract(raw: str) -> ExtractionResult:
    """Sentence-level keyword extraction.

    Sentences mentioning need/help/stuck/blocker are needs, the rest learnings.
    If nothing reads like a need, the first sentence is taken as one; if nothing
    reads like a learning and there is a second sentence, that one is used.
    """
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(raw) if s.strip()]

    needs: List[ExtractedItem] = []
    learnings: List[ExtractedItem] = []
    for sentence in sentences:
        lower = sentence.lower()
        item = ExtractedItem(label=sentence, category=infer_category(sentence))
        if any(marker in lower for marker in NEED_MARKERS):
            needs.append(item)
        else:
            learnings.append(item)

    if not needs and sentences:
        needs.append(ExtractedItem(label=sentences[0], category=infer_category(sentences[0])))
    if not learnings and len(sentences) > 1:
        learnings.append(ExtractedItem(label=sentences[1], category=infer_category(sentences[1])))

    return ExtractionResult(
        needs=needs[:MAX_EXTRACTED_ITEMS],
        learnings=learnings[:MAX_EXTRACTED_ITEMS],
    )


def call_llm_extract(
    raw: str,
    model: Optional[str] = None,
    max_retries: int = 2,
) -> ExtractionResult:
    """Extract needs and learnings with the OpenAI Responses API.

    Args:
        raw: The weekly update text (already stripped, non-empty).
        model: Optional model name; defaults to env `OPENAI_MODEL` or gpt-4.1-mini.
        max_retries: Number of attempts before giving up.

    Returns:
        The parsed ExtractionResult, capped at 3 items per list.

    Raises:
        Exception: whatever the last attempt raised; callers fall back on it.
    """
    from openai import OpenAI

    chosen_model = model or os.environ.get("OPENAI_MODEL", DEFAULT_OPENAI_MODEL)
    user_text = "\n".join(
        [
            "Given this weekly update from a founder, extract:",
            "- 1–3 'needs' (things they want help with)",
            "- 1–3 'learnings' (things they can help others with)",
            "",
            "Assign each item to ONE of these categories:",
            ", ".join(CATEGORY_OPTIONS),
            "",
            "Weekly update:",
            raw,
        ]
    )
    messages: Any = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_text},
    ]

    client = OpenAI()
    last_error: Optional[Exception] = None
    for attempt in range(1, max_retries + 1):
        try:
            parsed = client.responses.parse(  # type: ignore[call-arg]
                model=str(chosen_model),
                input=messages,
                text_format=LLMExtraction,  # type: ignore[arg-type]
            )
            if getattr(parsed, "output_parsed", None) is None:  # type: ignore[attr-defined]
                raise ValueError("Structured parse returned None")
            result: LLMExtraction = parsed.output_parsed  # type: ignore[assignment]
            return ExtractionResult.model_validate(
                {
                    "needs": [i.model_dump() for i in result.needs[:MAX_EXTRACTED_ITEMS]],
                    "learnings": [i.model_dump() for i in result.learnings[:MAX_EXTRACTED_ITEMS]],
                }
            )
        except Exception as e:
            last_error = e
            if attempt < max_retries:
                time.sleep(0.8 * attempt)
                continue
    raise last_error or RuntimeError("LLM extraction failed")


def extract_needs_learnings(text: str, model: Optional[str] = None) -> ExtractionResult:
    """Extract needs and learnings from free text.

    Raises:
        ValidationError: If the text is empty.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValidationError("text is required")

    if not os.environ.get("OPENAI_API_KEY"):
        return heuristic_extract(raw)

    try:
        return call_llm_extract(raw, model=model)
    except Exception as e:
        print(f"Warning: LLM extraction failed ({e}). Falling back to heuristic.")
        return heuristic_extract(raw)


def result_to_json(result: ExtractionResult) -> str:
    return json.dumps(result.model_dump(by_alias=True), ensure_ascii=False, indent=2)
