from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from .data_models import User, coerce_category
from .errors import ValidationError
from .store import Store


FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["id", "user_id", "userId", "User ID"],
    "email": ["email", "Email", "Your email address"],
    "name": ["name", "Name", "Your name"],
    "role": ["role", "Role"],
    "kind": ["kind", "type", "Kind"],
    "label": ["label", "Label", "text"],
    "category": ["category", "Category"],
}

KIND_ALIASES: Dict[str, str] = {
    "need": "need",
    "needs": "need",
    "learning": "learning",
    "learnings": "learning",
    "offer": "learning",
}


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def get_alias_series(df: pd.DataFrame, key: str, default: str = "") -> pd.Series:
    col = get_alias_column(df, key)
    if col is not None:
        return df[col]
    return pd.Series([default] * len(df), index=df.index)


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def clean_df(df: pd.DataFrame) -> pd.DataFrame:
    """Strip headers and string cells; blank cells become None."""
    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]) or pd.api.types.is_string_dtype(out[col]):
            text = (
                out[col]
                .astype(object)
                .where(out[col].notna(), "")
                .astype(str)
                .str.replace("\n", " ")
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
            )
            out[col] = text.astype(object).where(~text.isin(["nan", "None", ""]), None)
    return out


def load_users_df(df: pd.DataFrame, store: Store) -> List[User]:
    """Add users from a DataFrame; rows whose email already exists are skipped."""
    df = clean_df(df)
    if get_alias_column(df, "email") is None or get_alias_column(df, "name") is None:
        raise ValidationError("users CSV needs 'name' and 'email' columns")

    ids = get_alias_series(df, "id", default="")
    names = get_alias_series(df, "name")
    emails = get_alias_series(df, "email")
    roles = get_alias_series(df, "role", default="founder")

    added: List[User] = []
    for idx in df.index:
        email = emails[idx]
        if not email or store.find_user_by_email(email) is not None:
            continue
        fields = {
            "name": names[idx],
            "email": email,
            "role": (roles[idx] or "founder").lower(),
        }
        if ids[idx]:
            fields["id"] = str(ids[idx])
        try:
            user = User(**fields)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid user row {idx}: {e.errors()[0]['msg']}") from e
        added.append(store.add_user(user))
    return added


def load_checkins_df(df: pd.DataFrame, store: Store) -> Dict[str, Tuple[int, int]]:
    """Apply one check-in per user from rows of (user, kind, label, category).

    Returns:
        Mapping of user id to (needs, learnings) counts that were stored.
    """
    df = clean_df(df)
    missing = [k for k in ("id", "kind", "label") if get_alias_column(df, k) is None]
    if missing:
        raise ValidationError(f"check-in CSV is missing columns: {sorted(missing)}")

    work = pd.DataFrame(
        {
            "user_id": get_alias_series(df, "id").astype(str),
            "kind": get_alias_series(df, "kind").astype(str).str.lower().map(KIND_ALIASES),
            "label": get_alias_series(df, "label"),
            "category": get_alias_series(df, "category", default="other").map(coerce_category),
        }
    )
    unknown = work[work["kind"].isna()]
    if not unknown.empty:
        raise ValidationError(f"unknown kind in rows {unknown.index.tolist()}; use 'need' or 'learning'")
    work = work[work["label"].notna()]

    summary: Dict[str, Tuple[int, int]] = {}
    for user_id, rows in work.groupby("user_id", sort=False):
        items = rows[["label", "category"]]
        needs = items[rows["kind"] == "need"].to_dict(orient="records")
        learnings = items[rows["kind"] == "learning"].to_dict(orient="records")
        stored_needs, stored_learnings = store.check_in(str(user_id), needs, learnings)
        summary[str(user_id)] = (len(stored_needs), len(stored_learnings))
    return summary


def load_users_csv(csv_path: Path, store: Store) -> List[User]:
    return load_users_df(pd.read_csv(csv_path, dtype=str), store)


def load_checkins_csv(csv_path: Path, store: Store) -> Dict[str, Tuple[int, int]]:
    return load_checkins_df(pd.read_csv(csv_path, dtype=str), store)
