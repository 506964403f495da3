"""Read-side views over the store: dashboard tables and the admin overview."""

from __future__ import annotations

from typing import Dict, List

import pandas as pd
from pydantic import Field

from .data_models import CoffeeChat, Record
from .errors import ValidationError
from .store import Store

FOUNDER_MATCH_COLUMNS = [
    "id", "score", "reason", "status",
    "need_id", "need_label", "need_category",
    "expert_id", "expert_name", "expert_role",
]
EXPERT_MATCH_COLUMNS = [
    "id", "score", "reason", "status",
    "need_id", "need_label", "need_category",
    "requester_id", "requester_name", "requester_role",
]


class CategoryCount(Record):
    category: str
    count: int


class AdminOverview(Record):
    active_needs_count: int = 0
    active_learnings_count: int = 0
    match_suggestions_count: int = 0
    scheduled_chats_count: int = 0
    needs_by_category: List[CategoryCount] = Field(default_factory=list)
    learnings_by_category: List[CategoryCount] = Field(default_factory=list)


def _by_category(df: pd.DataFrame) -> List[CategoryCount]:
    if df.empty:
        return []
    counts = df.groupby("category", sort=True).size()
    return [CategoryCount(category=str(cat), count=int(n)) for cat, n in counts.items()]


def admin_overview(store: Store) -> AdminOverview:
    needs = pd.DataFrame([n.model_dump() for n in store.list_needs(active_only=True)])
    learnings = pd.DataFrame([l.model_dump() for l in store.list_learnings(active_only=True)])
    chats = store.list_chats()
    return AdminOverview(
        active_needs_count=len(needs),
        active_learnings_count=len(learnings),
        match_suggestions_count=len(store.list_suggestions()),
        scheduled_chats_count=sum(1 for c in chats if c.status == "scheduled"),
        needs_by_category=_by_category(needs),
        learnings_by_category=_by_category(learnings),
    )


def matches_for_user(store: Store, user_id: str, role: str) -> pd.DataFrame:
    """Suggestions as seen from one user's dashboard.

    - founder: suggestions for the user's needs, best score first
    - expert: suggestions where the user is the proposed expert, newest first

    Raises:
        ValidationError: For a missing user id or any other role.
    """
    if not user_id or not role:
        raise ValidationError("userId and role are required")
    if role not in ("founder", "expert"):
        raise ValidationError("Unsupported role for matches")

    needs = {n.id: n for n in store.list_needs(active_only=False)}
    users = {u.id: u for u in store.list_users()}
    rows: List[Dict[str, object]] = []
    for s in store.list_suggestions():
        need = needs.get(s.need_id)
        if need is None:
            continue
        if role == "founder" and need.user_id != user_id:
            continue
        if role == "expert" and s.expert_user_id != user_id:
            continue
        other_id = s.expert_user_id if role == "founder" else need.user_id
        other = users.get(other_id)
        prefix = "expert" if role == "founder" else "requester"
        rows.append(
            {
                "id": s.id,
                "score": s.score,
                "reason": s.reason,
                "status": s.status,
                "need_id": need.id,
                "need_label": need.label,
                "need_category": need.category,
                f"{prefix}_id": other_id,
                f"{prefix}_name": other.name if other else "",
                f"{prefix}_role": other.role if other else "",
            }
        )

    if role == "founder":
        df = pd.DataFrame(rows, columns=FOUNDER_MATCH_COLUMNS)
        return df.sort_values("score", ascending=False, kind="stable").reset_index(drop=True)
    # store order is creation order
    return pd.DataFrame(rows[::-1], columns=EXPERT_MATCH_COLUMNS)


def chats_for_user(store: Store, user_id: str, role: str) -> List[CoffeeChat]:
    """Chats the user takes part in, newest first. Admins see none."""
    if not user_id or not role:
        raise ValidationError("userId and role are required")
    if role == "admin":
        return []
    if role == "founder":
        chats = [c for c in store.list_chats() if c.requester_id == user_id]
    elif role == "expert":
        chats = [c for c in store.list_chats() if c.expert_id == user_id]
    else:
        raise ValidationError(f"Unsupported role: {role}")
    return sorted(chats, key=lambda c: c.created_at, reverse=True)
