from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reel2recipe.services.types import (
    INGREDIENTS_NOT_FOUND,
    Frame,
    FrameObservation,
    Recipe,
    RecipeDraft,
    StageAttempt,
    StageName,
    placeholder_draft,
    stage_label,
)


class TestStageLabel:
    @pytest.mark.parametrize(
        "index,label",
        [
            (0, "ingredient preparation"),
            (1, "early cooking"),
            (2, "early cooking"),
            (3, "mid cooking"),
            (4, "final dish/plating"),
            (9, "final dish/plating"),
        ],
    )
    def test_label_by_index(self, index: int, label: str) -> None:
        assert stage_label(index) == label
        assert Frame(index=index, timestamp=1.0, image=b"x").stage_label == label


class TestFrameObservation:
    def test_valid_observation(self) -> None:
        assert FrameObservation(0, "OBSERVATIONS: flour and eggs in a bowl").is_valid

    @pytest.mark.parametrize("text", ["", "   ", "No cooking content visible.", "too short"])
    def test_invalid_observations(self, text: str) -> None:
        assert not FrameObservation(0, text).is_valid


class TestRecipeDraft:
    def test_placeholder_has_no_ingredients(self) -> None:
        draft = placeholder_draft()
        assert draft.placeholder
        assert draft.ingredients == [INGREDIENTS_NOT_FOUND]
        assert draft.usable_ingredients == []
        assert not draft.has_ingredients

    def test_sentinel_is_not_usable(self) -> None:
        draft = RecipeDraft(ingredients=[INGREDIENTS_NOT_FOUND, "1 egg"])
        assert draft.usable_ingredients == ["1 egg"]
        assert draft.has_ingredients


class TestStageAttempt:
    def test_duration_ms(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        attempt = StageAttempt(stage=StageName.AUDIO, started_at=start, ended_at=start + timedelta(seconds=1.5))
        assert attempt.duration_ms == 1500

    def test_duration_unknown_while_running(self) -> None:
        attempt = StageAttempt(stage=StageName.VIDEO, started_at=datetime.now(timezone.utc))
        assert attempt.duration_ms is None


class TestRecipe:
    def test_to_dict(self) -> None:
        recipe = Recipe(
            title="Pancakes",
            ingredients=["2 cups flour"],
            instructions=["Mix."],
            platform="tiktok",
            source="captions",
        )
        assert recipe.to_dict() == {
            "title": "Pancakes",
            "ingredients": ["2 cups flour"],
            "instructions": ["Mix."],
            "thumbnail": None,
            "platform": "tiktok",
            "source": "captions",
        }
