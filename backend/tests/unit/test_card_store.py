"""
Unit tests for card serialization and the SQL store's row mapping.

No database is needed: rows are plain ``CardModel`` instances.
"""

from datetime import timedelta

import pytest

from cardflow.core.models import (
    Card,
    CardType,
    Color,
    LinkPreview,
    LinkPreviewStatus,
    MetadataStatus,
    StageState,
)
from cardflow.core.processing_status import build_initial_processing_status
from cardflow.db.models import CardModel
from cardflow.db.store import SqlCardStore, card_to_values, row_to_card
from cardflow.services.card_store import serialize_fields

from tests.conftest import FIXED_NOW


class TestSerializeFields:
    def test_domain_values(self):
        fields = serialize_fields(
            {
                "type": CardType.LINK,
                "metadata_status": MetadataStatus.PENDING,
                "colors": [Color(hex="#FFFFFF", name="white")],
                "link_preview": LinkPreview(status=LinkPreviewStatus.SUCCESS, url="https://a.test"),
                "updated_at": FIXED_NOW,
                "ai_summary": None,
            }
        )

        assert fields["type"] == "link"
        assert fields["metadata_status"] == "pending"
        assert fields["colors"] == [{"hex": "#FFFFFF", "name": "white"}]
        assert fields["link_preview"] == {
            "source": "html",
            "status": "success",
            "url": "https://a.test",
        }
        assert fields["updated_at"] is FIXED_NOW
        assert fields["ai_summary"] is None


class TestRowMapping:
    def test_row_to_card(self):
        row = CardModel(
            id="card-1",
            owner_id="user-1",
            type="palette",
            content="Sunset",
            colors=[{"hex": "#FF8800"}],
            processing_status={"classify": {"status": "completed", "confidence": 0.88}},
            is_deleted=False,
            created_at=FIXED_NOW,
        )

        card = row_to_card(row)

        assert card.type == CardType.PALETTE
        assert card.colors == [Color(hex="#FF8800")]
        assert card.processing_status.classify.status == StageState.COMPLETED
        assert card.processing_status.metadata is None
        assert card.updated_at is None

    def test_missing_processing_status(self):
        row = CardModel(
            id="card-1", owner_id="user-1", type="text", content="", is_deleted=False, created_at=FIXED_NOW
        )

        assert row_to_card(row).processing_status.classify is None

    def test_card_to_values(self):
        card = Card(
            id="card-1",
            owner_id="user-1",
            type=CardType.LINK,
            url="https://a.test",
            metadata_status=MetadataStatus.PENDING,
            processing_status=build_initial_processing_status(CardType.LINK, FIXED_NOW),
            created_at=FIXED_NOW,
        )

        values = card_to_values(card)

        assert values["type"] == "link"
        assert values["metadata_status"] == "pending"
        assert values["processing_status"]["categorize"] == {"status": "pending"}
        assert values["created_at"] == FIXED_NOW
        assert "updated_at" not in values

    def test_values_build_an_equivalent_row(self):
        card = Card(
            id="card-1",
            owner_id="user-1",
            type=CardType.QUOTE,
            content="A wise quote",
            tags=["wisdom"],
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW + timedelta(minutes=1),
        )

        assert row_to_card(CardModel(**card_to_values(card))) == card


@pytest.mark.asyncio
class TestSqlCardStore:
    async def test_unknown_fields_are_rejected(self):
        with pytest.raises(ValueError, match="Unknown card fields"):
            await SqlCardStore().patch("card-1", {"title": "nope"})
