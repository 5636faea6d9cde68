"""
Card store interface.

The pipeline only talks to storage through this contract: point reads,
single-document patches and two indexed scans. Every patch is applied
atomically by the implementation, so a step's content fields and its
stage status always land together.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from cardflow.core.models import Card


def serialize_value(value: Any) -> Any:
    """Convert domain values into their JSON-compatible storage form."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [serialize_value(item) for item in value]
    return value


def serialize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: serialize_value(value) for key, value in fields.items()}


class CardStore(ABC):
    """Storage collaborator for cards."""

    @abstractmethod
    async def get(self, card_id: str) -> Card | None:
        """Load a card, or None when it does not exist."""

    @abstractmethod
    async def patch(self, card_id: str, fields: dict[str, Any]) -> None:
        """Atomically update the given top-level fields of one card.

        Raises:
            CardNotFoundError: If the card does not exist
        """

    @abstractmethod
    async def insert(self, card: Card) -> str:
        """Persist a new card and return its id."""

    @abstractmethod
    async def list_missing_ai(self, created_before: datetime, limit: int) -> list[Card]:
        """Live cards created before the cutoff that carry no AI provenance stamp."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str, include_deleted: bool = False) -> list[Card]:
        """Cards belonging to one owner, newest first."""
