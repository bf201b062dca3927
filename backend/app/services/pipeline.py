import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

try:
    from backend.app.schemas import ContentItem, SearchQuery
    from backend.app.services.result_cache import ResultCache, fingerprint
    from backend.app.services.scoring import hours_since
    from backend.app.services.sources import ContentSource
    from backend.app.services.usage import UsageMeter
except ModuleNotFoundError:
    from app.schemas import ContentItem, SearchQuery
    from app.services.result_cache import ResultCache, fingerprint
    from app.services.scoring import hours_since
    from app.services.sources import ContentSource
    from app.services.usage import UsageMeter


logger = logging.getLogger(__name__)

MAX_RESULTS = 100
DEFAULT_SOURCE_TIMEOUT_SECONDS = 30.0


@dataclass
class SearchResult:
    items: list[ContentItem]
    cached: bool
    cache_key: str
    cache_info: dict[str, Any] | None = None
    search_info: dict[str, Any] | None = None
    failed_sources: list[dict[str, str]] = field(default_factory=list)


def dedupe_items(items: list[ContentItem]) -> list[ContentItem]:
    unique = []
    seen: set[str] = set()
    for item in items:
        key = item.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def filter_by_categories(items: list[ContentItem], categories: list[str]) -> list[ContentItem]:
    if not categories:
        return items
    wanted = set(categories)
    return [item for item in items if item.category in wanted]


def rank_items(items: list[ContentItem], limit: int = MAX_RESULTS) -> list[ContentItem]:
    return sorted(items, key=lambda item: item.viral_score, reverse=True)[:limit]


class ViralSearchPipeline:
    """
    Fans a SearchQuery out over every (country, platform) pair, then merges,
    dedupes, filters, ranks and truncates the results.

    Fresh results always refresh the cache. Source failures are logged and
    skipped; they never fail the search as a whole.
    """

    def __init__(
        self,
        sources: dict[str, ContentSource],
        cache: ResultCache,
        usage_meter: UsageMeter,
        max_results: int = MAX_RESULTS,
        max_workers: int = 4,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
    ):
        self.sources = sources
        self.cache = cache
        self.usage_meter = usage_meter
        self.max_results = max_results
        self.max_workers = max(1, max_workers)
        self.source_timeout = source_timeout

    def search(self, query: SearchQuery, now: datetime | None = None) -> SearchResult:
        now = now or datetime.now(timezone.utc)
        cache_key = fingerprint(
            query.countries,
            query.platforms,
            query.categories,
            query.time_range,
            query.min_views,
        )

        if query.use_cache:
            cached_items = self.cache.get(cache_key)
            if cached_items is not None:
                refreshed = [
                    item.model_copy(update={"hours_ago": hours_since(item.published_at, now)})
                    for item in cached_items
                ]
                return SearchResult(
                    items=refreshed,
                    cached=True,
                    cache_key=cache_key,
                    cache_info=self.cache.info(cache_key),
                )

        logger.info(
            "Viral search: countries=%s platforms=%s categories=%s timeRange=%s minViews=%s",
            query.countries,
            query.platforms,
            query.categories,
            query.time_range,
            query.min_views,
        )

        collected, quota_units, failures = self._fan_out(query, now)

        unique = dedupe_items(collected)
        filtered = filter_by_categories(unique, query.categories)
        final_items = rank_items(filtered, self.max_results)
        logger.info("Viral search finished with %d items", len(final_items))

        if quota_units > 0:
            self.usage_meter.track(quota_units)

        self.cache.put(cache_key, final_items)

        return SearchResult(
            items=final_items,
            cached=False,
            cache_key=cache_key,
            search_info={
                "countries": query.countries,
                "platforms": query.platforms,
                "categories": query.categories,
                "timeRange": query.time_range,
                "minViews": query.min_views,
                "totalFound": len(final_items),
                "apiCallsUsed": quota_units,
                "failedSources": failures,
            },
            failed_sources=failures,
        )

    def _fan_out(
        self,
        query: SearchQuery,
        now: datetime,
    ) -> tuple[list[ContentItem], int, list[dict[str, str]]]:
        pairs = [(country, platform) for country in query.countries for platform in query.platforms]
        collected: list[ContentItem] = []
        quota_units = 0
        failures: list[dict[str, str]] = []

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(pairs)))
        try:
            futures: list[tuple[str, str, Future | None]] = []
            for country, platform in pairs:
                source = self.sources.get(platform)
                if source is None:
                    logger.warning("No source registered for platform %s", platform)
                    futures.append((country, platform, None))
                    continue
                futures.append(
                    (
                        country,
                        platform,
                        executor.submit(source.search, country, query.time_range, query.min_views, now),
                    )
                )

            # Merge in pair order so the first copy of a duplicate is deterministic.
            for country, platform, future in futures:
                if future is None:
                    failures.append({"country": country, "platform": platform, "error": "unknown platform"})
                    continue
                try:
                    items = future.result(timeout=self.source_timeout)
                except FutureTimeoutError:
                    future.cancel()
                    logger.error("%s %s search timed out after %ss", platform, country, self.source_timeout)
                    failures.append({"country": country, "platform": platform, "error": "timeout"})
                    continue
                except Exception as exc:
                    logger.error("%s %s search failed: %s", platform, country, exc)
                    failures.append({"country": country, "platform": platform, "error": str(exc)})
                    continue

                quota_units += self.sources[platform].quota_cost
                if items:
                    collected.extend(items)
                    logger.info("%s %s: collected %d items", platform, country, len(items))
        finally:
            # A timed-out source keeps its worker; don't block the response on it.
            executor.shutdown(wait=False, cancel_futures=True)

        return collected, quota_units, failures
