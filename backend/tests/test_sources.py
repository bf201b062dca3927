import random
from datetime import datetime, timedelta, timezone

import pytest
import requests

from backend.app.services.sources import (
    YOUTUBE_SEARCH_LIST,
    YOUTUBE_VIDEOS_LIST,
    SimulatedSource,
    SourceError,
    YouTubeQuotaExceededError,
    YouTubeSource,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_video(video_id, hours_ago, views, title=None, channel="Test Channel"):
    published_at = (NOW - timedelta(hours=hours_ago)).isoformat().replace("+00:00", "Z")
    return {
        "id": video_id,
        "snippet": {
            "title": title or f"Video {video_id}",
            "channelTitle": channel,
            "publishedAt": published_at,
            "description": "",
            "thumbnails": {
                "medium": {"url": f"https://img/{video_id}_m.jpg"},
                "high": {"url": f"https://img/{video_id}.jpg", "width": 480, "height": 360},
            },
        },
        "statistics": {"viewCount": str(views), "likeCount": "10", "commentCount": "2"},
        "contentDetails": {"duration": "PT45S"},
    }


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class FakeSession:
    """Routes requests by (url, chart/q/id) to canned responses."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {}), timeout))
        return self.handler(url, params or {})


def test_youtube_source_merges_chart_and_keyword_results():
    chart = [
        make_video("a", 2, 900_000),
        make_video("b", 10, 2_000_000),
        make_video("old", 100, 9_000_000),
        make_video("small", 1, 1_000),
    ]
    keyword_videos = [make_video("b", 10, 2_000_000), make_video("c", 5, 700_000)]

    def handler(url, params):
        if url == YOUTUBE_VIDEOS_LIST and params.get("chart") == "mostPopular":
            return FakeResponse(payload={"items": chart})
        if url == YOUTUBE_SEARCH_LIST:
            return FakeResponse(payload={"items": [{"id": {"videoId": "b"}}, {"id": {"videoId": "c"}}]})
        if url == YOUTUBE_VIDEOS_LIST and params.get("id"):
            return FakeResponse(payload={"items": keyword_videos})
        raise AssertionError(f"unexpected call {url} {params}")

    session = FakeSession(handler)
    source = YouTubeSource("KEY", session=session, timeout=7)
    items = source.search("US", 24, 500_000, now=NOW)

    assert [item.id for item in items] == ["b", "a", "c"]
    assert [item.viral_score for item in items] == sorted((i.viral_score for i in items), reverse=True)
    assert all(item.platform == "youtube" and item.country == "US" for item in items)
    assert items[0].url == "https://www.youtube.com/watch?v=b"
    assert items[0].thumbnail == "https://img/b.jpg"
    assert items[0].hours_ago == 10
    searches = [params["q"] for url, params, _ in session.calls if url == YOUTUBE_SEARCH_LIST]
    assert searches == ["viral", "trending"]
    assert all(timeout == 7 for _, _, timeout in session.calls)
    assert all(params["key"] == "KEY" for _, params, _ in session.calls)


def test_youtube_keyword_failure_is_skipped():
    def handler(url, params):
        if params.get("chart") == "mostPopular":
            return FakeResponse(payload={"items": [make_video("a", 2, 900_000)]})
        if url == YOUTUBE_SEARCH_LIST and params.get("q") == "핫한":
            return FakeResponse(status_code=400, text="bad request")
        if url == YOUTUBE_SEARCH_LIST:
            return FakeResponse(payload={"items": [{"id": {"videoId": "k"}}]})
        return FakeResponse(payload={"items": [make_video("k", 3, 800_000)]})

    source = YouTubeSource("KEY", session=FakeSession(handler), max_retries=0)
    items = source.search("KR", 24, 500_000, now=NOW)
    assert sorted(item.id for item in items) == ["a", "k"]


class HtmlResponse(FakeResponse):
    def __init__(self):
        super().__init__(text="<html>Proxy error</html>")

    def json(self):
        raise requests.exceptions.JSONDecodeError("Expecting value", self.text, 0)


def test_youtube_unreadable_keyword_response_keeps_chart_items():
    def handler(url, params):
        if params.get("chart") == "mostPopular":
            return FakeResponse(payload={"items": [make_video("a", 2, 900_000)]})
        return HtmlResponse()

    source = YouTubeSource("KEY", session=FakeSession(handler), max_retries=0)
    items = source.search("US", 24, 0, now=NOW)
    assert [item.id for item in items] == ["a"]


def test_youtube_unreadable_response_is_source_error():
    source = YouTubeSource("KEY", session=FakeSession(lambda url, params: HtmlResponse()), max_retries=0)
    with pytest.raises(SourceError, match="unreadable"):
        source.api_get(YOUTUBE_VIDEOS_LIST, {"part": "snippet"})


def test_youtube_chart_failure_raises_source_error():
    source = YouTubeSource(
        "KEY",
        session=FakeSession(lambda url, params: FakeResponse(status_code=400, text="bad")),
        max_retries=0,
    )
    with pytest.raises(SourceError):
        source.search("US", 24, 500_000, now=NOW)


def test_youtube_quota_exceeded_is_not_retried():
    session = FakeSession(lambda url, params: FakeResponse(status_code=403, text='{"reason": "quotaExceeded"}'))
    source = YouTubeSource("KEY", session=session, max_retries=3, backoff_seconds=0)
    with pytest.raises(YouTubeQuotaExceededError):
        source.search("US", 24, 500_000, now=NOW)
    assert len(session.calls) == 1


def test_youtube_retries_transient_errors(monkeypatch):
    monkeypatch.setattr("backend.app.services.sources.time.sleep", lambda _s: None)
    attempts = {"count": 0}

    def handler(url, params):
        if params.get("chart") == "mostPopular":
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise requests.ConnectionError("boom")
            if attempts["count"] == 2:
                return FakeResponse(status_code=503, text="unavailable")
            return FakeResponse(payload={"items": [make_video("a", 2, 900_000)]})
        return FakeResponse(payload={"items": []})

    source = YouTubeSource("KEY", session=FakeSession(handler), max_retries=2)
    items = source.search("US", 24, 500_000, now=NOW)
    assert [item.id for item in items] == ["a"]
    assert attempts["count"] == 3


def test_youtube_missing_api_key_fails():
    with pytest.raises(SourceError):
        YouTubeSource(None, session=FakeSession(lambda u, p: FakeResponse())).search("US", 24, 0, now=NOW)


@pytest.mark.parametrize("platform", ["tiktok", "instagram"])
def test_simulated_source_respects_constraints(platform):
    source = SimulatedSource(platform, rng=random.Random(7))
    for country in ("KR", "JP", "US"):
        items = source.search(country, 6, 250_000, now=NOW)
        assert 3 <= len(items) <= 7
        for item in items:
            assert item.platform == platform
            assert item.country == country
            assert item.view_count >= 250_000
            assert 0 <= item.hours_ago < 6
            assert item.viral_score == item.view_count * (73 - item.hours_ago)
            assert item.id.startswith(f"{platform}_{country}_")


def test_simulated_source_is_deterministic_with_seeded_rng():
    first = SimulatedSource("tiktok", rng=random.Random(42)).search("US", 24, 100_000, now=NOW)
    second = SimulatedSource("tiktok", rng=random.Random(42)).search("US", 24, 100_000, now=NOW)
    assert first == second


def test_simulated_source_category_matches_title():
    items = SimulatedSource("tiktok", rng=random.Random(3)).search("US", 24, 0, now=NOW)
    for item in items:
        if item.title == "Crazy Puppy Reactions Compilation":
            assert item.category == "animals"
        if item.title == "Celebrity Lookalike Pranks":
            assert item.category == "celebrity"


def test_simulated_source_rejects_unknown_platform():
    with pytest.raises(ValueError):
        SimulatedSource("youtube")
