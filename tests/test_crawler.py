import pytest

from trending_crawler.errors import EmptyResultError, FetchError
from trending_crawler.utils.crawler import KeywordCollector, parse_trending_keywords

from conftest import FRONT_PAGE_URL, FakeFetcher, front_page_html


def test_ranks_follow_first_seen_order():
    keywords = parse_trending_keywords(front_page_html(["가", "나", "다"]), "https://namu.wiki")
    assert [(k.rank, k.keyword) for k in keywords] == [(1, "가"), (2, "나"), (3, "다")]
    assert keywords[0].url.startswith("https://namu.wiki/Go?q=")


def test_duplicate_titles_are_suppressed_and_ranks_stay_contiguous():
    html = front_page_html(["가", "나", "가", "다", "나"])
    keywords = parse_trending_keywords(html, "https://namu.wiki")
    assert [k.keyword for k in keywords] == ["가", "나", "다"]
    assert [k.rank for k in keywords] == [1, 2, 3]


def test_links_without_title_or_other_hrefs_are_ignored():
    html = """
    <a href="/Go?q=%EA%B0%80">no title</a>
    <a href="/w/other" title="문서">문서</a>
    <a href="/Go?q=%EB%82%98" title="나">나</a>
    """
    keywords = parse_trending_keywords(html, "https://namu.wiki")
    assert [k.keyword for k in keywords] == ["나"]
    assert keywords[0].rank == 1


def test_collect_fetches_front_page():
    fetcher = FakeFetcher({FRONT_PAGE_URL: front_page_html(["가", "나"])})
    keywords = KeywordCollector(fetcher).collect()
    assert fetcher.calls == [FRONT_PAGE_URL]
    assert len(keywords) == 2


def test_collect_raises_empty_result_when_no_keywords():
    fetcher = FakeFetcher({FRONT_PAGE_URL: "<html><body>maintenance</body></html>"})
    with pytest.raises(EmptyResultError):
        KeywordCollector(fetcher).collect()


def test_collect_propagates_fetch_error():
    with pytest.raises(FetchError):
        KeywordCollector(FakeFetcher()).collect()
