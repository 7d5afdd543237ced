from __future__ import annotations

from deep_research.models.research import SourceType
from deep_research.research_core.registry import SourceRegistry
from deep_research.tools.web_utils import extract_domain, normalize_url


class TestNormalizeUrl:
    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://WWW.Example.COM/Path") == "https://www.example.com/Path"

    def test_drops_fragment_tracking_params_and_trailing_slash(self):
        url = "https://example.com/report/?utm_source=x&id=7#section"
        assert normalize_url(url) == "https://example.com/report?id=7"

    def test_drops_default_port_only(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"


class TestMerge:
    def test_same_normalized_url_is_one_entry(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a/", relevance=0.5)
        registry.merge("https://EXAMPLE.com/a#top", relevance=0.4)

        assert len(registry) == 1
        assert "https://example.com/a" in registry

    def test_relevance_keeps_maximum(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a", relevance=0.5)
        registry.merge("https://example.com/a", relevance=0.9)
        registry.merge("https://example.com/a", relevance=0.2)

        assert registry.get("https://example.com/a").relevance == 0.9

    def test_relevance_is_clamped(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a", relevance=3.0)
        registry.merge("https://example.com/b", relevance=-1.0)

        assert registry.get("https://example.com/a").relevance == 1.0
        assert registry.get("https://example.com/b").relevance == 0.0

    def test_type_is_promoted_never_demoted(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a", source_type=SourceType.DISCOVERY)
        registry.merge("https://example.com/a", source_type=SourceType.SEARCH)
        assert registry.get("https://example.com/a").type is SourceType.DISCOVERY

        registry.merge("https://example.com/a", source_type=SourceType.SCRAPE)
        registry.merge("https://example.com/a", source_type=SourceType.DISCOVERY)
        assert registry.get("https://example.com/a").type is SourceType.SCRAPE

    def test_placeholder_title_is_replaced(self):
        registry = SourceRegistry()
        source = registry.merge("https://www.example.com/a")
        assert source.title == "example.com"

        registry.merge("https://www.example.com/a", title="Real Title", source_type=SourceType.DISCOVERY)
        assert source.title == "Real Title"

        registry.merge("https://www.example.com/a", title="Other", source_type=SourceType.DISCOVERY)
        assert source.title == "Real Title"

    def test_first_seen_order_is_preserved(self):
        registry = SourceRegistry()
        for url in ("https://b.com", "https://a.com", "https://c.com", "https://a.com"):
            registry.merge(url)

        assert [s.url for s in registry] == ["https://b.com", "https://a.com", "https://c.com"]


class TestScrapeTracking:
    def test_record_scrape_promotes_and_floors_relevance(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a", relevance=0.4)

        source = registry.record_scrape(
            "https://example.com/a", title="Page", excerpt="body", relevance_floor=0.9
        )

        assert source.type is SourceType.SCRAPE
        assert source.relevance == 0.9
        assert source.snippet == "body"
        assert registry.scrape_count == 1

    def test_candidates_exclude_attempted_and_low_relevance(self):
        registry = SourceRegistry()
        registry.merge("https://a.com", relevance=0.95)
        registry.merge("https://b.com", relevance=0.7)
        registry.merge("https://c.com", relevance=0.6)
        registry.merge("https://d.com", relevance=0.99)
        registry.mark_attempted("https://d.com/")

        candidates = registry.scrape_candidates(0.6)

        assert [s.url for s in candidates] == ["https://a.com", "https://b.com"]
        assert registry.was_attempted("https://D.com")

    def test_unique_domains_ignores_www(self):
        registry = SourceRegistry()
        registry.merge("https://www.example.com/a")
        registry.merge("https://example.com/b")
        registry.merge("https://other.org/c")

        assert registry.unique_domains() == 2
        assert extract_domain("https://www.example.com/a") == "example.com"

    def test_to_dicts_uses_wire_keys(self):
        registry = SourceRegistry()
        registry.merge("https://example.com/a", title="A", relevance=0.8)

        [row] = registry.to_dicts()
        assert set(row) == {"url", "title", "snippet", "type", "relevance", "firstSeenAt"}
        assert row["type"] == "search"
