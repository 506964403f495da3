"""
Match engine: pairs each active need with the founders who can help.

For every need it will:

- Build the candidate pool: learnings of other users in the same category
  (category is a hard gate, self-matching is impossible)
- Score each candidate by token overlap of the two labels plus a category bonus
- Drop candidates at or below the noise threshold
- Keep the best 3 per need, highest score first (ties keep encounter order)

The result is a flat list of MatchSuggestion records. `recompute_matches`
hands that list to the store, which swaps it in for all previous suggestions
in one transaction.
"""
from __future__ import annotations

import math
import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .config import (
    CATEGORY_BONUS,
    MAX_REASON_KEYWORDS,
    REASON_SEPARATOR,
    SCORE_THRESHOLD,
    STOPWORDS,
    TOP_K_PER_NEED,
)
from .data_models import Learning, MatchSuggestion, Need

if TYPE_CHECKING:
    from .store import Store

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str) -> List[str]:
    """Split a label into lowercase keyword tokens, in encounter order.

    Punctuation becomes whitespace, so "go-to-market" splits into "go", "to"
    and "market" before stop words are dropped
    (leaving "go", "market"). Duplicates are kept; callers that need a set
    take one.
    """
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return [w for w in cleaned.split() if w and w not in STOPWORDS]


def compute_similarity(need: Need, learning: Learning) -> Tuple[float, List[str]]:
    """Score a need/learning pair.

    Returns:
        (score, common) where `common` is the shared token set in the order the
        tokens first appear in the need label. An empty label on either side
        scores 0.
    """
    need_tokens = tokenize(need.label)
    learn_tokens = tokenize(learning.label)
    if not need_tokens or not learn_tokens:
        return 0.0, []

    need_set = list(dict.fromkeys(need_tokens))
    learn_set = set(learn_tokens)
    common = [t for t in need_set if t in learn_set]

    overlap = len(common) / max(len(need_set), len(learn_set))
    category_bonus = CATEGORY_BONUS if need.category == learning.category else 0.0
    score = min(1.0, overlap + category_bonus)
    return score, common


def _confidence_percent(score: float) -> int:
    # half-up, matching what users have always been shown
    return int(math.floor(score * 100 + 0.5))


def build_reason(need: Need, learning: Learning, score: float) -> str:
    """Human-readable justification, e.g.

    'Both focus on marketing • Related keywords: "go", "market" • 63% match confidence'
    """
    parts: List[str] = []
    if need.category == learning.category:
        parts.append(f"Both focus on {need.category}")

    learn_tokens = tokenize(learning.label)
    keywords = [t for t in tokenize(need.label) if t in learn_tokens]
    if keywords:
        keyword_list = ", ".join(f'"{k}"' for k in keywords[:MAX_REASON_KEYWORDS])
        parts.append(f"Related keywords: {keyword_list}")

    parts.append(f"{_confidence_percent(score)}% match confidence")
    return REASON_SEPARATOR.join(parts)


def _get_candidate_pool(need: Need, learnings: Sequence[Learning]) -> List[Learning]:
    """Learnings of other users that share the need's category."""
    return [
        l for l in learnings
        if l.is_active and l.user_id != need.user_id and l.category == need.category
    ]


def _score_candidates(need: Need, candidates: Iterable[Learning]) -> List[MatchSuggestion]:
    scored: List[MatchSuggestion] = []
    for learning in candidates:
        score, _ = compute_similarity(need, learning)
        if score <= SCORE_THRESHOLD:
            continue
        scored.append(
            MatchSuggestion(
                need_id=need.id,
                expert_user_id=learning.user_id,
                score=score,
                reason=build_reason(need, learning, score),
            )
        )
    return scored


def compute_matches(
    needs: Sequence[Need],
    learnings: Sequence[Learning],
    top_k: int = TOP_K_PER_NEED,
) -> List[MatchSuggestion]:
    """Rank candidate experts for every active need.

    Args:
        needs: Need records; inactive ones are skipped.
        learnings: Learning records; inactive ones are skipped.
        top_k: Maximum suggestions kept per need.

    Returns:
        Suggestions grouped by need (in input order), each group sorted by
        descending score. Empty input gives an empty list.
    """
    suggestions: List[MatchSuggestion] = []
    for need in needs:
        if not need.is_active:
            continue
        candidates = _get_candidate_pool(need, learnings)
        # sorted() is stable with reverse=True, so ties keep candidate order
        ranked = sorted(_score_candidates(need, candidates), key=lambda m: m.score, reverse=True)
        suggestions.extend(ranked[:top_k])
    return suggestions


def recompute_matches(
    store: "Store",
    progress_fn: Optional[Callable[[int, int], None]] = None,
) -> List[MatchSuggestion]:
    """Recompute suggestions from the store's active snapshot and replace them.

    The replace is a single store transaction, so readers see either the old
    batch or the new one. Two recomputes racing each other: the last one wins.
    """
    needs = store.list_needs(active_only=True)
    learnings = store.list_learnings(active_only=True)
    suggestions = compute_matches(needs, learnings)
    store.replace_suggestions(suggestions)

    if progress_fn is not None:
        try:
            progress_fn(len(needs), len(suggestions))
        except Exception:
            # Ignore progress callback errors to avoid breaking the run
            pass
    return suggestions
