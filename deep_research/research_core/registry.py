from __future__ import annotations

from typing import Iterator, Optional

from deep_research.models.research import Source, SourceType, utc_now_iso
from deep_research.tools.web_utils import extract_domain, normalize_url


class SourceRegistry:
    """De-duplicated source set for one research task.

    Entries are keyed by normalized URL and kept in first-seen order. An
    existing entry is enriched in place: relevance is ``max(old, new)`` and
    the type only moves up search -> discovery -> scrape. Nothing is removed.
    Owned by a single controller coroutine, so no locking.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Source] = {}
        self._attempted: set[str] = set()
        self._scraped: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Source]:
        return iter(self._entries.values())

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalize_url(url) in self._entries

    def get(self, url: str) -> Optional[Source]:
        return self._entries.get(normalize_url(url))

    def merge(
        self,
        url: str,
        *,
        title: str = "",
        snippet: str = "",
        source_type: SourceType = SourceType.SEARCH,
        relevance: float = 0.0,
    ) -> Source:
        """Insert a new source or enrich the existing one for this URL."""
        key = normalize_url(url)
        relevance = min(max(float(relevance), 0.0), 1.0)
        existing = self._entries.get(key)
        if existing is None:
            source = Source(
                url=url.strip(),
                title=title or extract_domain(url),
                snippet=snippet,
                type=source_type,
                relevance=relevance,
                first_seen_at=utc_now_iso(),
            )
            self._entries[key] = source
            return source

        existing.relevance = max(existing.relevance, relevance)
        if source_type.rank > existing.type.rank:
            existing.type = source_type
        placeholder_title = not existing.title or existing.title == extract_domain(existing.url)
        if title and (source_type is SourceType.SCRAPE or placeholder_title):
            existing.title = title
        if snippet and (source_type is SourceType.SCRAPE or not existing.snippet):
            existing.snippet = snippet
        return existing

    def mark_attempted(self, url: str) -> None:
        self._attempted.add(normalize_url(url))

    def was_attempted(self, url: str) -> bool:
        return normalize_url(url) in self._attempted

    def record_scrape(
        self,
        url: str,
        *,
        title: str,
        excerpt: str,
        relevance_floor: float,
    ) -> Source:
        """Promote a source after a successful scrape."""
        self._scraped.add(normalize_url(url))
        current = self.get(url)
        relevance = max(relevance_floor, current.relevance if current else 0.0)
        return self.merge(
            url,
            title=title,
            snippet=excerpt,
            source_type=SourceType.SCRAPE,
            relevance=relevance,
        )

    def scrape_candidates(self, threshold: float) -> list[Source]:
        """Unattempted sources above ``threshold``, highest relevance first."""
        candidates = [
            s for key, s in self._entries.items()
            if s.relevance > threshold and key not in self._attempted
        ]
        return sorted(candidates, key=lambda s: s.relevance, reverse=True)

    @property
    def scrape_count(self) -> int:
        return len(self._scraped)

    def unique_domains(self) -> int:
        return len({extract_domain(s.url) for s in self._entries.values()})

    def snapshot(self) -> list[Source]:
        return list(self._entries.values())

    def to_dicts(self) -> list[dict]:
        return [s.to_dict() for s in self._entries.values()]
