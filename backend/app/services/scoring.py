import math
import re
from datetime import datetime


ELIGIBILITY_WINDOW_HOURS = 72

# Declared order is the tie-break: the first category with a matching keyword wins.
CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "beauty": ["메이크업", "스킨케어", "뷰티", "화장", "코스메틱", "メイク", "makeup", "skincare", "beauty"],
    "celebrity": ["아이돌", "배우", "연예인", "셀럽", "스타", "idol", "celebrity", "celeb", "kpop"],
    "tips": ["꿀팁", "라이프해킹", "정리", "살림", "노하우", "tips", "lifehack", "organize", "hack"],
    "health": ["다이어트", "운동", "헬스", "요가", "건강", "フィットネス", "diet", "workout", "fitness", "health"],
    "tech": ["스마트폰", "아이폰", "가전", "테크", "smartphone", "tech", "gadget"],
    "animals": ["강아지", "고양이", "동물", "펫", "猫", "犬", "puppy", "puppies", "kitten", "animal", "dog"],
    "entertainment": ["영화", "드라마", "리뷰", "예고편", "アニメ", "movie", "drama", "trailer", "review"],
    "knowledge": ["역사", "과학", "교육", "상식", "지식", "history", "science", "education"],
    "crime": ["사건", "실화", "미스터리", "범죄", "법정", "crime", "mystery", "courtroom"],
}
OTHER_CATEGORY = "other"
CATEGORIES = [*CATEGORY_KEYWORDS.keys(), OTHER_CATEGORY]

VIRAL_LEVELS = [
    (50_000_000, "legendary"),
    (20_000_000, "epic"),
    (10_000_000, "high"),
    (5_000_000, "good"),
    (1_000_000, "normal"),
]


def iso8601_duration_to_seconds(duration: str) -> int:
    match = re.match(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?", duration or "")
    if not match:
        return 0
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + seconds


def parse_iso8601_datetime(value: str):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def hours_since(published_at: datetime, now: datetime) -> int:
    elapsed = (now - published_at).total_seconds()
    if elapsed <= 0:
        return 0
    return math.floor(elapsed / 3600)


def calculate_viral_score(view_count: int, published_at: datetime, now: datetime) -> int:
    """
    View count weighted by linear recency: weight 72 within the first hour,
    down to 1 at 72 hours. Anything older is outside the window and scores 0.
    """
    hours_ago = hours_since(published_at, now)
    if hours_ago > ELIGIBILITY_WINDOW_HOURS:
        return 0
    time_weight = max(1, ELIGIBILITY_WINDOW_HOURS + 1 - hours_ago)
    return max(0, int(view_count)) * time_weight


def categorize(title: str, description: str = "") -> str:
    text = f"{title or ''} {description or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            if keyword.lower() in text:
                return category
    return OTHER_CATEGORY


def viral_level(score: int) -> str:
    for threshold, label in VIRAL_LEVELS:
        if score >= threshold:
            return label
    return "low"


def format_viral_score(score: int) -> str:
    if score >= 1_000_000_000:
        return f"{score / 1_000_000_000:.1f}B"
    if score >= 1_000_000:
        return f"{score / 1_000_000:.1f}M"
    if score >= 1_000:
        return f"{score / 1_000:.1f}K"
    return str(score)
