"""
Coffee-chat negotiation: request -> slots proposed -> slot chosen -> scheduled.

A chat starts as `proposed` when a founder acts on a match suggestion. The
expert proposes candidate slots (they accumulate across calls), the founder
picks one, and the chat becomes `scheduled` with a meeting link. Selecting is
terminal: once a slot is chosen no further slot changes are accepted.
"""
from __future__ import annotations

from typing import Any, Callable, List, Literal, Mapping, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from .config import meeting_base_url, meeting_room_prefix
from .data_models import CoffeeChat, ProposedSlot, SlotInput
from .errors import ConflictError, ValidationError
from .store import Store

ChatStage = Literal["awaiting_slots", "awaiting_choice", "scheduled"]
SlotLike = Union[SlotInput, Mapping[str, Any]]


def jitsi_meeting_link(chat_id: str) -> str:
    """Jitsi Meet room URL, using the chat id as room name."""
    return f"{meeting_base_url().rstrip('/')}/{meeting_room_prefix()}-{chat_id}"


def chat_stage(chat: CoffeeChat) -> ChatStage:
    """Where the negotiation stands, as shown on the founder/expert dashboards."""
    if chat.status == "scheduled":
        return "scheduled"
    if chat.chosen_slot_id is None and chat.proposed_slots:
        return "awaiting_choice"
    return "awaiting_slots"


def _parse_slot(slot: SlotLike) -> SlotInput:
    if isinstance(slot, SlotInput):
        return slot
    try:
        return SlotInput.model_validate(dict(slot))
    except PydanticValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "slot"
        raise ValidationError(f"Invalid slot ({where}): {first['msg']}") from e


class ChatNegotiation:
    """State machine driving CoffeeChat records held by a Store.

    Args:
        store: Where chats and slots live; multi-record updates use its transactions.
        link_generator: Maps a chat id to a joinable URL. Must be deterministic.
    """

    def __init__(
        self,
        store: Store,
        link_generator: Callable[[str], str] = jitsi_meeting_link,
    ) -> None:
        self.store = store
        self.link_generator = link_generator

    def create(self, need_id: str, requester_id: str, expert_id: str) -> CoffeeChat:
        """Open a new negotiation. Not idempotent: each call creates a distinct chat."""
        if not need_id or not requester_id or not expert_id:
            raise ValidationError("needId, requesterId and expertId are required")
        with self.store.transaction():
            self.store.get_need(need_id)
            self.store.get_user(requester_id)
            self.store.get_user(expert_id)
            chat = self.store.add_chat(
                CoffeeChat(need_id=need_id, requester_id=requester_id, expert_id=expert_id)
            )
        return chat

    def get_chat(self, chat_id: str) -> CoffeeChat:
        if not chat_id:
            raise ValidationError("chatId is required")
        return self.store.get_chat(chat_id)

    def propose_slots(self, chat_id: str, slots: Sequence[SlotLike]) -> CoffeeChat:
        """Append pending slots to the chat. Earlier proposals are kept."""
        if not chat_id:
            raise ValidationError("chatId is required")
        if not slots:
            raise ValidationError("slots array is required")
        parsed: List[SlotInput] = [_parse_slot(s) for s in slots]

        with self.store.transaction():
            chat = self.store.get_chat(chat_id)
            if chat.status != "proposed":
                raise ConflictError(f"CoffeeChat {chat_id} is already {chat.status}")
            self.store.add_slots(
                [
                    ProposedSlot(coffee_chat_id=chat_id, start_time=s.start_time, end_time=s.end_time)
                    for s in parsed
                ]
            )
        return self.store.get_chat(chat_id)

    def select_slot(self, chat_id: str, slot_id: str) -> CoffeeChat:
        """Choose one slot and schedule the chat.

        In one transaction: the chat becomes `scheduled` with the chosen slot and
        a meeting link, the slot becomes `selected`, every other slot of the chat
        `expired`. A second select on the same chat raises ConflictError.
        """
        if not chat_id or not slot_id:
            raise ValidationError("chatId and slotId are required")

        with self.store.transaction():
            chat = self.store.get_chat(chat_id)
            slot = self.store.get_slot(slot_id)
            if slot.coffee_chat_id != chat_id:
                raise ValidationError(f"ProposedSlot {slot_id} does not belong to CoffeeChat {chat_id}")
            if chat.status != "proposed":
                raise ConflictError(
                    f"CoffeeChat {chat_id} is already {chat.status} (slot {chat.chosen_slot_id})"
                )

            self.store.update_chat(
                chat_id,
                status="scheduled",
                chosen_slot_id=slot_id,
                meeting_link=self.link_generator(chat_id),
            )
            self.store.update_slot(slot_id, status="selected")
            for other in chat.proposed_slots:
                if other.id != slot_id:
                    self.store.update_slot(other.id, status="expired")
        return self.store.get_chat(chat_id)
