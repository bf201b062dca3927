from datetime import datetime, timedelta, timezone

from backend.app.services.scoring import (
    CATEGORY_KEYWORDS,
    calculate_viral_score,
    categorize,
    format_viral_score,
    hours_since,
    iso8601_duration_to_seconds,
    viral_level,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


def test_iso8601_duration_to_seconds():
    assert iso8601_duration_to_seconds("PT1H2M3S") == 3723
    assert iso8601_duration_to_seconds("PT45S") == 45
    assert iso8601_duration_to_seconds("PT5M") == 300
    assert iso8601_duration_to_seconds("") == 0


def test_hours_since_floors_and_clamps_future():
    assert hours_since(hours_ago(2.9), NOW) == 2
    assert hours_since(hours_ago(0.5), NOW) == 0
    assert hours_since(NOW + timedelta(hours=3), NOW) == 0


def test_viral_score_formula_inside_window():
    for hours in (0, 1, 2, 24, 71, 72):
        expected = 1000 * max(1, 73 - hours)
        assert calculate_viral_score(1000, hours_ago(hours), NOW) == expected


def test_viral_score_is_zero_outside_window():
    assert calculate_viral_score(5_000_000, hours_ago(73), NOW) == 0
    assert calculate_viral_score(5_000_000, hours_ago(200), NOW) == 0


def test_viral_score_weight_bounds():
    assert calculate_viral_score(10, hours_ago(0.2), NOW) == 730
    assert calculate_viral_score(10, hours_ago(1), NOW) == 720
    assert calculate_viral_score(10, hours_ago(72.5), NOW) == 10


def test_viral_score_monotonic():
    scores_by_age = [calculate_viral_score(1234, hours_ago(h), NOW) for h in range(0, 80)]
    assert all(a >= b for a, b in zip(scores_by_age, scores_by_age[1:]))

    scores_by_views = [calculate_viral_score(v, hours_ago(10), NOW) for v in range(0, 5000, 250)]
    assert all(a <= b for a, b in zip(scores_by_views, scores_by_views[1:]))


def test_categorize_first_match_wins():
    assert categorize("Crazy Puppy Reactions Compilation") == "animals"
    assert categorize("Celebrity Lookalike Pranks") == "celebrity"
    # "makeup" (beauty) and "dog" (animals) both match; beauty is declared first.
    assert categorize("Dog makeup challenge") == "beauty"
    assert categorize("대박 웃긴 강아지 리액션 모음") == "animals"


def test_categorize_uses_description_and_is_case_insensitive():
    assert categorize("Watch this", "New SMARTPHONE unboxing") == "tech"
    assert categorize("College Dorm Room Tour") == "other"


def test_categorize_ignores_keywords_inside_other_words():
    assert categorize("Vacation vlog") == "other"
    assert categorize("Start your morning routine") == "other"
    assert categorize("Competition highlights on the carpet") == "other"
    assert categorize("Courtesy call prank") == "other"


def test_category_order_is_stable():
    assert list(CATEGORY_KEYWORDS)[:3] == ["beauty", "celebrity", "tips"]
    assert list(CATEGORY_KEYWORDS)[-1] == "crime"


def test_viral_level_and_label():
    assert viral_level(60_000_000) == "legendary"
    assert viral_level(5_000_000) == "good"
    assert viral_level(999) == "low"
    assert format_viral_score(1_500_000_000) == "1.5B"
    assert format_viral_score(2_340_000) == "2.3M"
    assert format_viral_score(4_500) == "4.5K"
    assert format_viral_score(12) == "12"
