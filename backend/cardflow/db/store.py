"""
SQLAlchemy-backed card store.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update

from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.models import Card
from cardflow.db.database import get_db_session
from cardflow.db.models import CardModel
from cardflow.services.card_store import CardStore, serialize_fields

logger = structlog.get_logger()

CARD_COLUMNS = (
    "id", "owner_id", "type", "content", "url", "file_ref", "file_metadata",
    "tags", "notes", "colors", "link_preview", "metadata_status", "link_category",
    "ai_tags", "ai_summary", "ai_transcript", "ai_model_meta", "thumbnail_ref",
    "processing_status", "workflow_run_id", "is_deleted", "created_at", "updated_at",
)


def row_to_card(row: CardModel) -> Card:
    data = {column: getattr(row, column) for column in CARD_COLUMNS}
    if data["processing_status"] is None:
        data["processing_status"] = {}
    return Card.model_validate(data)


def card_to_values(card: Card) -> dict[str, Any]:
    values = serialize_fields({column: getattr(card, column) for column in CARD_COLUMNS})
    if values.get("updated_at") is None:
        values.pop("updated_at", None)
    return values


class SqlCardStore(CardStore):
    """CardStore over the ``cards`` table, one short session per call."""

    async def get(self, card_id: str) -> Card | None:
        async with get_db_session() as db:
            row = await db.get(CardModel, card_id)
            return row_to_card(row) if row else None

    async def patch(self, card_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - set(CARD_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown card fields: {sorted(unknown)}")

        async with get_db_session() as db:
            result = await db.execute(
                update(CardModel)
                .where(CardModel.id == card_id)
                .values(**serialize_fields(fields))
            )
            if result.rowcount == 0:
                await db.rollback()
                raise CardNotFoundError(card_id)
            await db.commit()

    async def insert(self, card: Card) -> str:
        async with get_db_session() as db:
            db.add(CardModel(**card_to_values(card)))
            await db.commit()
        logger.info("card_inserted", card_id=card.id, card_type=card.type.value)
        return card.id

    async def list_missing_ai(self, created_before: datetime, limit: int) -> list[Card]:
        async with get_db_session() as db:
            result = await db.execute(
                select(CardModel)
                .where(
                    CardModel.is_deleted.is_(False),
                    CardModel.created_at < created_before,
                    CardModel.ai_model_meta.is_(None),
                )
                .order_by(CardModel.created_at)
                .limit(limit)
            )
            return [row_to_card(row) for row in result.scalars().all()]

    async def list_by_owner(self, owner_id: str, include_deleted: bool = False) -> list[Card]:
        async with get_db_session() as db:
            query = select(CardModel).where(CardModel.owner_id == owner_id)
            if not include_deleted:
                query = query.where(CardModel.is_deleted.is_(False))
            result = await db.execute(query.order_by(CardModel.created_at.desc()))
            return [row_to_card(row) for row in result.scalars().all()]
