import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

try:
    from backend.app.schemas import ContentItem
    from backend.app.services.scoring import (
        calculate_viral_score,
        categorize,
        hours_since,
        parse_iso8601_datetime,
    )
except ModuleNotFoundError:
    from app.schemas import ContentItem
    from app.services.scoring import (
        calculate_viral_score,
        categorize,
        hours_since,
        parse_iso8601_datetime,
    )


logger = logging.getLogger(__name__)

YOUTUBE_VIDEOS_LIST = "https://www.googleapis.com/youtube/v3/videos"
YOUTUBE_SEARCH_LIST = "https://www.googleapis.com/youtube/v3/search"

# Rough estimate of one chart call plus two keyword searches and their hydration.
YOUTUBE_QUOTA_COST_PER_CALL = 150
TRENDING_KEYWORD_LIMIT = 2

TRENDING_KEYWORDS = {
    "KR": ["핫한", "대박", "화제", "급상승"],
    "JP": ["バズった", "話題", "トレンド", "急上昇"],
    "US": ["viral", "trending", "breaking", "exploding"],
}


class SourceError(Exception):
    pass


class YouTubeQuotaExceededError(SourceError):
    pass


class ContentSource:
    """
    A per-platform producer of ContentItems. Subclasses implement search()
    and either return a (possibly empty) list or raise SourceError.
    """

    platform = ""
    quota_cost = 0

    def search(
        self,
        country: str,
        time_range_hours: int,
        min_views: int,
        now: datetime | None = None,
    ) -> list[ContentItem]:
        raise NotImplementedError


def best_thumbnail_object(thumbnails: dict) -> dict | None:
    for key in ("maxres", "standard", "high", "medium", "default"):
        t = thumbnails.get(key)
        if t and "url" in t:
            return t
    return None


def _safe_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


class YouTubeSource(ContentSource):
    platform = "youtube"
    quota_cost = YOUTUBE_QUOTA_COST_PER_CALL

    def __init__(
        self,
        api_key: str | None,
        timeout: float = 15,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()

    def api_get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        merged = params.copy()
        merged["key"] = self.api_key
        attempt = 0
        while True:
            try:
                response = self.session.get(url, params=merged, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt < self.max_retries:
                    self._backoff(attempt, exc)
                    attempt += 1
                    continue
                raise SourceError(f"YouTube is temporarily unavailable: {exc}") from exc

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as exc:
                    raise SourceError("YouTube returned an unreadable response") from exc

            lowered = response.text.lower()
            if response.status_code in {403, 429} and (
                "quotaexceeded" in lowered or "quota exceeded" in lowered or "youtube.quota" in lowered
            ):
                raise YouTubeQuotaExceededError("YouTube API quota exceeded")

            if response.status_code >= 500 and attempt < self.max_retries:
                self._backoff(attempt, f"HTTP {response.status_code}")
                attempt += 1
                continue

            raise SourceError(f"YouTube API request failed with HTTP {response.status_code}")

    def _backoff(self, attempt: int, reason: Any) -> None:
        delay = self.backoff_seconds * (2 ** attempt)
        logger.warning("YouTube request failed (%s), retrying in %.1fs", reason, delay)
        time.sleep(delay)

    def fetch_popular_chart(self, country: str) -> list[dict]:
        payload = self.api_get(
            YOUTUBE_VIDEOS_LIST,
            {
                "part": "snippet,statistics,contentDetails",
                "chart": "mostPopular",
                "regionCode": country,
                "maxResults": 50,
            },
        )
        return payload.get("items", [])

    def fetch_keyword_videos(self, keyword: str, country: str, published_after: datetime) -> list[dict]:
        payload = self.api_get(
            YOUTUBE_SEARCH_LIST,
            {
                "part": "snippet",
                "q": keyword,
                "type": "video",
                "regionCode": country,
                "publishedAfter": published_after.isoformat().replace("+00:00", "Z"),
                "order": "viewCount",
                "maxResults": 25,
            },
        )
        video_ids = [
            (item.get("id") or {}).get("videoId")
            for item in payload.get("items", [])
        ]
        video_ids = [vid for vid in video_ids if vid]
        if not video_ids:
            return []

        hydrated = self.api_get(
            YOUTUBE_VIDEOS_LIST,
            {
                "part": "snippet,statistics,contentDetails",
                "id": ",".join(video_ids),
            },
        )
        return hydrated.get("items", [])

    def search(
        self,
        country: str,
        time_range_hours: int,
        min_views: int,
        now: datetime | None = None,
    ) -> list[ContentItem]:
        if not self.api_key:
            raise SourceError("Missing YOUTUBE_API_KEY")

        now = now or datetime.now(timezone.utc)
        published_after = now - timedelta(hours=time_range_hours)

        videos = list(self.fetch_popular_chart(country))

        keywords = TRENDING_KEYWORDS.get(country, TRENDING_KEYWORDS["US"])
        for keyword in keywords[:TRENDING_KEYWORD_LIMIT]:
            try:
                videos.extend(self.fetch_keyword_videos(keyword, country, published_after))
            except YouTubeQuotaExceededError:
                logger.warning("YouTube quota exhausted during keyword search for %s", country)
                break
            except SourceError as exc:
                logger.warning("YouTube keyword search %r failed for %s: %s", keyword, country, exc)

        items = self.build_items(videos, country, min_views, now)
        items.sort(key=lambda item: item.viral_score, reverse=True)
        return items

    def build_items(self, videos: list[dict], country: str, min_views: int, now: datetime) -> list[ContentItem]:
        items: list[ContentItem] = []
        seen_ids: set[str] = set()
        for video in videos:
            video_id = video.get("id")
            if not isinstance(video_id, str) or video_id in seen_ids:
                continue
            seen_ids.add(video_id)

            snip = video.get("snippet", {}) or {}
            stats = video.get("statistics", {}) or {}
            details = video.get("contentDetails", {}) or {}

            view_count = _safe_int(stats.get("viewCount"))
            if view_count < min_views:
                continue

            published_at = parse_iso8601_datetime(snip.get("publishedAt") or "")
            if published_at is None:
                continue
            viral_score = calculate_viral_score(view_count, published_at, now)
            if viral_score == 0:
                continue

            thumb_obj = best_thumbnail_object(snip.get("thumbnails", {}) or {}) or {}
            title = snip.get("title") or ""
            items.append(
                ContentItem(
                    id=video_id,
                    title=title,
                    channel_title=snip.get("channelTitle") or "",
                    published_at=published_at,
                    thumbnail=thumb_obj.get("url"),
                    view_count=view_count,
                    like_count=_safe_int(stats.get("likeCount")),
                    comment_count=_safe_int(stats.get("commentCount")),
                    duration=details.get("duration") or "PT0S",
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    platform=self.platform,
                    country=country,
                    category=categorize(title, snip.get("description") or ""),
                    viral_score=viral_score,
                    hours_ago=hours_since(published_at, now),
                )
            )
        return items


SIMULATED_TITLES = {
    "tiktok": {
        "KR": [
            "대박 웃긴 강아지 리액션 모음",
            "하루만에 배우는 K-POP 커버댄스",
            "학교 급식 후기 영상",
            "대학생 공감 100% 번아웃 브이로그",
            "카페 사장님의 깜짝 이벤트",
        ],
        "JP": [
            "おもしろ猫動画集",
            "トレンドダンスチャレンジ",
            "日本食リアクション",
            "アニメコスプレメイク",
            "東京ストリートファッション",
        ],
        "US": [
            "Crazy Puppy Reactions Compilation",
            "Food Hack That Actually Works",
            "College Dorm Room Tour",
            "Street Interview Gone Wrong",
            "Celebrity Lookalike Pranks",
        ],
    },
    "instagram": {
        "KR": [
            "메이크업 변신 리얼 타임",
            "서울 카페 투어 브이로그",
            "홈트레이닝 운동 루틴 공개",
            "OOTD 패션 코디",
            "명품하울 언박싱",
        ],
        "JP": [
            "メイクタイムラプス",
            "東京カフェ巡り",
            "フィットネスルーティン",
            "コーディネート紹介",
            "グルメツアー",
        ],
        "US": [
            "Get Ready With Me",
            "Coffee Shop Aesthetic",
            "Workout Transformation",
            "Fashion Haul Try-On",
            "Food Recipe Tutorial",
        ],
    },
}

SIMULATED_CREATORS = {
    "tiktok": [
        "trendy_creator", "viral_master", "funny_clips", "daily_vlogs", "dance_star",
        "comedy_king", "foodie_love", "pet_lovers", "fashion_icon", "tech_guru",
    ],
    "instagram": [
        "fashion_guru", "beauty_queen", "fitness_lover", "food_blogger", "travel_diary",
        "style_icon", "makeup_artist", "daily_lifestyle", "healthy_living", "creative_soul",
    ],
}

SIMULATED_PROFILES = {
    "tiktok": {
        "max_extra_views": 3_000_000,
        "likes": (20_000, 100_000),
        "comments": (2_000, 10_000),
        "duration": (10, 60),
        "url": "https://www.tiktok.com/@{creator}/video/{item_id}",
    },
    "instagram": {
        "max_extra_views": 2_500_000,
        "likes": (15_000, 80_000),
        "comments": (1_500, 8_000),
        "duration": (15, 75),
        "url": "https://www.instagram.com/reel/{item_id}",
    },
}


class SimulatedSource(ContentSource):
    """
    Stand-in for a scraping-backed platform. Produces 3-7 synthetic items per
    call that honour the requested country, time window and view floor.
    """

    def __init__(
        self,
        platform: str,
        rng: random.Random | None = None,
        latency_seconds: float = 0.0,
    ):
        if platform not in SIMULATED_PROFILES:
            raise ValueError(f"No simulated profile for platform {platform!r}")
        self.platform = platform
        self.rng = rng or random.Random()
        self.latency_seconds = max(0.0, latency_seconds)

    def search(
        self,
        country: str,
        time_range_hours: int,
        min_views: int,
        now: datetime | None = None,
    ) -> list[ContentItem]:
        if self.latency_seconds:
            time.sleep(self.latency_seconds)

        now = now or datetime.now(timezone.utc)
        profile = SIMULATED_PROFILES[self.platform]
        titles = SIMULATED_TITLES[self.platform].get(country) or SIMULATED_TITLES[self.platform]["US"]
        creators = SIMULATED_CREATORS[self.platform]
        stamp = int(now.timestamp() * 1000)

        items = []
        for i in range(self.rng.randint(3, 7)):
            hours_ago = self.rng.randrange(max(1, time_range_hours))
            published_at = now - timedelta(hours=hours_ago)
            view_count = self.rng.randrange(profile["max_extra_views"]) + min_views
            title = self.rng.choice(titles)
            creator = self.rng.choice(creators)
            item_id = f"{self.platform}_{country}_{stamp}_{i}"
            items.append(
                ContentItem(
                    id=item_id,
                    title=title,
                    channel_title=f"@{creator}",
                    published_at=published_at,
                    thumbnail=f"https://picsum.photos/400/300?random={item_id}",
                    view_count=view_count,
                    like_count=self.rng.randint(*profile["likes"]),
                    comment_count=self.rng.randint(*profile["comments"]),
                    duration=f"PT{self.rng.randint(*profile['duration'])}S",
                    url=profile["url"].format(creator=creator, item_id=item_id),
                    platform=self.platform,
                    country=country,
                    category=categorize(title),
                    viral_score=calculate_viral_score(view_count, published_at, now),
                    hours_ago=hours_ago,
                )
            )

        return [item for item in items if item.viral_score > 0 and item.view_count >= min_views]
