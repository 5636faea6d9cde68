"""
Unit tests for link category label normalization.
"""

import pytest

from cardflow.core.link_categories import LINK_CATEGORY_LABELS, normalize_link_category
from cardflow.core.models import LinkCategory


class TestNormalizeLinkCategory:
    @pytest.mark.parametrize(
        "label,expected",
        [
            ("article", LinkCategory.ARTICLE),
            ("TV Show", LinkCategory.TV),
            ("GitHub Project", LinkCategory.SOFTWARE),
            ("Design Portfolio", LinkCategory.DESIGN_PORTFOLIO),
            ("design_portfolio", LinkCategory.DESIGN_PORTFOLIO),
            ("Blog Update", LinkCategory.NEWS),
            ("Film", LinkCategory.MOVIE),
            ("  Research Paper  ", LinkCategory.RESEARCH),
            ("Podcast Episode / Audio Show", LinkCategory.PODCAST),
        ],
    )
    def test_known_variants(self, label, expected):
        assert normalize_link_category(label) == expected

    @pytest.mark.parametrize("label", [None, "", "   ", "spaceship", "!!!"])
    def test_unknown_labels(self, label):
        assert normalize_link_category(label) is None

    def test_every_category_has_a_label(self):
        assert set(LINK_CATEGORY_LABELS) == set(LinkCategory)

    def test_every_full_label_round_trips(self):
        for category, label in LINK_CATEGORY_LABELS.items():
            assert normalize_link_category(label) == category
