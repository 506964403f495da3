"""
In-memory store for MatchFoundry records, with JSON snapshot persistence.

The match engine and the chat state machine only talk to this interface. All
multi-record updates go through `transaction()`: changes are applied to the
live state under a re-entrant lock and rolled back from a snapshot if anything
inside the block raises, so callers never observe a partial update.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from filelock import FileLock, Timeout
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .config import lock_timeout
from .data_models import (
    CoffeeChat,
    ExtractedItem,
    Learning,
    MatchSuggestion,
    Need,
    ProfileItem,
    ProposedSlot,
    User,
)
from .errors import ConflictError, InternalError, MatchFoundryError, NotFoundError, ValidationError

ItemT = TypeVar("ItemT", bound=ProfileItem)
ItemInput = Union[ExtractedItem, Mapping[str, Any]]


class StoreState(BaseModel):
    """Everything the store holds. Also the on-disk snapshot schema."""

    # Bumped on every save; a writer holding an older version is rejected
    version: int = 0
    users: Dict[str, User] = Field(default_factory=dict)
    # Current check-in generation per user; items of older generations are retired
    generations: Dict[str, int] = Field(default_factory=dict)
    needs: Dict[str, Need] = Field(default_factory=dict)
    learnings: Dict[str, Learning] = Field(default_factory=dict)
    suggestions: Dict[str, MatchSuggestion] = Field(default_factory=dict)
    chats: Dict[str, CoffeeChat] = Field(default_factory=dict)
    slots: Dict[str, ProposedSlot] = Field(default_factory=dict)


class Store:
    def __init__(self, state: Optional[StoreState] = None) -> None:
        self._state = state or StoreState()
        self._lock = threading.RLock()
        self._depth = 0
        self._file_lock: Optional[FileLock] = None

    # ---- transactions ----
    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """All-or-nothing block. Nested calls join the outer transaction.

        Errors that are not MatchFoundryError are wrapped in InternalError.
        """
        with self._lock:
            outermost = self._depth == 0
            backup = copy.deepcopy(self._state) if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException as exc:
                if outermost:
                    self._state = backup  # type: ignore[assignment]
                if isinstance(exc, MatchFoundryError) or not isinstance(exc, Exception):
                    raise
                raise InternalError("Store operation failed", str(exc)) from exc
            finally:
                self._depth -= 1

    # ---- users ----
    def add_user(self, user: User) -> User:
        with self.transaction():
            self._state.users[user.id] = user.model_copy(deep=True)
        return user

    def get_user(self, user_id: str) -> User:
        with self._lock:
            user = self._state.users.get(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            return user.model_copy(deep=True)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for user in self._state.users.values():
                if user.email.lower() == email.strip().lower():
                    return user.model_copy(deep=True)
        return None

    def list_users(self) -> List[User]:
        with self._lock:
            return [u.model_copy(deep=True) for u in self._state.users.values()]

    # ---- needs & learnings ----
    def check_in(
        self,
        user_id: str,
        needs: Sequence[ItemInput] = (),
        learnings: Sequence[ItemInput] = (),
    ) -> Tuple[List[Need], List[Learning]]:
        """Replace the user's active needs and learnings with a new generation.

        Older items stay in the store, retired. An empty check-in retires
        everything the user had.
        """
        if not user_id:
            raise ValidationError("userId is required")
        with self.transaction():
            if user_id not in self._state.users:
                raise NotFoundError("User", user_id)
            generation = self._state.generations.get(user_id, 0) + 1
            self._state.generations[user_id] = generation

            new_needs = [
                Need(user_id=user_id, generation=generation, **_item_fields(n)) for n in needs or []
            ]
            new_learnings = [
                Learning(user_id=user_id, generation=generation, **_item_fields(l))
                for l in learnings or []
            ]
            for n in new_needs:
                self._state.needs[n.id] = n
            for l in new_learnings:
                self._state.learnings[l.id] = l
        return (
            [self._with_activity(n) for n in new_needs],
            [self._with_activity(l) for l in new_learnings],
        )

    def current_generation(self, user_id: str) -> int:
        with self._lock:
            return self._state.generations.get(user_id, 0)

    def _with_activity(self, item: ItemT) -> ItemT:
        active = item.generation == self._state.generations.get(item.user_id, 0)
        return item.model_copy(update={"is_active": active})

    def _list_items(
        self, items: Mapping[str, ItemT], active_only: bool, user_id: Optional[str]
    ) -> List[ItemT]:
        out: List[ItemT] = []
        for item in items.values():
            if user_id is not None and item.user_id != user_id:
                continue
            view = self._with_activity(item)
            if active_only and not view.is_active:
                continue
            out.append(view)
        return out

    def list_needs(self, active_only: bool = True, user_id: Optional[str] = None) -> List[Need]:
        with self._lock:
            return self._list_items(self._state.needs, active_only, user_id)

    def list_learnings(
        self, active_only: bool = True, user_id: Optional[str] = None
    ) -> List[Learning]:
        with self._lock:
            return self._list_items(self._state.learnings, active_only, user_id)

    def get_need(self, need_id: str) -> Need:
        with self._lock:
            need = self._state.needs.get(need_id)
            if need is None:
                raise NotFoundError("Need", need_id)
            return self._with_activity(need)

    # ---- suggestions ----
    def replace_suggestions(self, suggestions: Sequence[MatchSuggestion]) -> None:
        """Swap the whole suggestion table for a fresh batch (clear + bulk insert)."""
        with self.transaction():
            self._state.suggestions = {s.id: s.model_copy(deep=True) for s in suggestions}

    def list_suggestions(self) -> List[MatchSuggestion]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._state.suggestions.values()]

    # ---- chats & slots ----
    def add_chat(self, chat: CoffeeChat) -> CoffeeChat:
        with self.transaction():
            self._state.chats[chat.id] = chat.model_copy(update={"proposed_slots": []}, deep=True)
        return self.get_chat(chat.id)

    def get_chat(self, chat_id: str) -> CoffeeChat:
        """Chat with its proposed slots attached, in proposal order."""
        with self._lock:
            chat = self._state.chats.get(chat_id)
            if chat is None:
                raise NotFoundError("CoffeeChat", chat_id)
            return chat.model_copy(update={"proposed_slots": self.slots_for_chat(chat_id)}, deep=True)

    def update_chat(self, chat_id: str, **changes: Any) -> CoffeeChat:
        with self.transaction():
            chat = self._state.chats.get(chat_id)
            if chat is None:
                raise NotFoundError("CoffeeChat", chat_id)
            self._state.chats[chat_id] = chat.model_copy(update=changes)
        return self.get_chat(chat_id)

    def list_chats(self) -> List[CoffeeChat]:
        with self._lock:
            return [self.get_chat(chat_id) for chat_id in self._state.chats]

    def add_slots(self, slots: Sequence[ProposedSlot]) -> None:
        with self.transaction():
            for slot in slots:
                if slot.coffee_chat_id not in self._state.chats:
                    raise NotFoundError("CoffeeChat", slot.coffee_chat_id)
                self._state.slots[slot.id] = slot.model_copy(deep=True)

    def get_slot(self, slot_id: str) -> ProposedSlot:
        with self._lock:
            slot = self._state.slots.get(slot_id)
            if slot is None:
                raise NotFoundError("ProposedSlot", slot_id)
            return slot.model_copy(deep=True)

    def update_slot(self, slot_id: str, **changes: Any) -> ProposedSlot:
        with self.transaction():
            slot = self._state.slots.get(slot_id)
            if slot is None:
                raise NotFoundError("ProposedSlot", slot_id)
            self._state.slots[slot_id] = slot.model_copy(update=changes)
            return self._state.slots[slot_id].model_copy(deep=True)

    def slots_for_chat(self, chat_id: str) -> List[ProposedSlot]:
        with self._lock:
            return [
                s.model_copy(deep=True) for s in self._state.slots.values() if s.coffee_chat_id == chat_id
            ]

    # ---- persistence ----
    def to_json(self) -> str:
        with self._lock:
            return self._state.model_dump_json(indent=2, by_alias=True)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Store":
        return cls(StoreState.model_validate_json(data))

    @classmethod
    @contextmanager
    def open(cls, path: Union[str, Path], timeout: Optional[float] = None) -> Iterator["Store"]:
        """Load a state file and hold its lock until the block exits.

        Other processes opening the same file wait for the lock, so every
        command reads what the previous one saved.

        Raises:
            ConflictError: If the lock is not free within `timeout` seconds.
        """
        lock = _acquire(state_lock(path, timeout), path)
        try:
            store = cls.load(path)
            store._file_lock = lock
            yield store
        finally:
            lock.release()

    def save(self, path: Union[str, Path]) -> None:
        """Write a JSON snapshot atomically (temp file + rename).

        Each save bumps the snapshot version. If the file on disk no longer
        has the version this store was loaded with, another writer got there
        first and the save fails with ConflictError instead of overwriting it.
        """
        path = Path(path)
        held = self._file_lock
        if held is not None and held.lock_file == _lock_path(path):
            lock = _acquire(held, path)
        else:
            lock = _acquire(state_lock(path), path)
        try:
            with self._lock:
                on_disk = _stored_version(path)
                if on_disk != self._state.version:
                    raise ConflictError(
                        f"State file {path} changed since it was loaded "
                        f"(version {on_disk}, expected {self._state.version})"
                    )
                snapshot = self._state.model_copy(update={"version": on_disk + 1})
                tmp_path = path.with_name(f"{path.name}.tmp")
                try:
                    tmp_path.write_text(snapshot.model_dump_json(indent=2, by_alias=True), encoding="utf-8")
                    os.replace(tmp_path, path)
                except OSError as e:
                    if tmp_path.exists():
                        tmp_path.unlink()
                    raise InternalError(f"Failed to save state to {path}", str(e)) from e
                self._state.version = on_disk + 1
        finally:
            lock.release()

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Store":
        """Load a snapshot; a missing file gives an empty store."""
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            return cls.from_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise InternalError(f"Failed to load state from {path}", str(e)) from e


def _lock_path(path: Union[str, Path]) -> str:
    return f"{Path(path).resolve()}.lock"


def state_lock(path: Union[str, Path], timeout: Optional[float] = None) -> FileLock:
    """Inter-process lock guarding one state file (`<state file>.lock`)."""
    return FileLock(_lock_path(path), timeout=lock_timeout() if timeout is None else timeout)


def _acquire(lock: FileLock, path: Union[str, Path]) -> FileLock:
    try:
        lock.acquire()
    except Timeout as e:
        raise ConflictError(f"State file {path} is in use by another process") from e
    return lock


def _stored_version(path: Path) -> int:
    if not path.exists():
        return 0
    try:
        return int(json.loads(path.read_text(encoding="utf-8")).get("version", 0))
    except (OSError, ValueError, AttributeError) as e:
        raise InternalError(f"Failed to read state from {path}", str(e)) from e


def _item_fields(item: ItemInput) -> Dict[str, Any]:
    if isinstance(item, BaseModel):
        item = item.model_dump()
    try:
        parsed = ExtractedItem.model_validate(dict(item))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid check-in item: {e.errors()[0]['msg']}") from e
    return {"label": parsed.label, "category": parsed.category}
