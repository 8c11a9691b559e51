import logging
from typing import List
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from trending_crawler.errors import EmptyResultError
from trending_crawler.schemas import TrendingKeyword

logger = logging.getLogger("crawler")

# Real-time search links on the front page look like /Go?q=<term>
TRENDING_LINK_SELECTOR = 'a[href^="/Go?q="]'


def parse_trending_keywords(html: str, base_url: str) -> List[TrendingKeyword]:
    """Extract ranked keywords in first-seen order, skipping repeated titles"""
    soup = BeautifulSoup(html, "html.parser")
    keywords: List[TrendingKeyword] = []
    seen = set()

    for link in soup.select(TRENDING_LINK_SELECTOR):
        href = link.get("href")
        title = (link.get("title") or "").strip()
        if not href or not title or title in seen:
            continue
        seen.add(title)
        keywords.append(TrendingKeyword(rank=len(keywords) + 1, keyword=title, url=urljoin(base_url, href)))

    return keywords


class KeywordCollector:
    """Collects the ranked trending list from the wiki front page."""

    def __init__(self, fetcher, base_url: str = "https://namu.wiki", front_page: str = "/w/나무위키:대문"):
        self.fetcher = fetcher
        self.base_url = base_url
        self.front_page = front_page

    def collect(self) -> List[TrendingKeyword]:
        page_url = urljoin(self.base_url, self.front_page)
        logger.info(f"[Collector] Fetching trending keywords from {page_url}")
        html = self.fetcher.fetch(page_url)
        keywords = parse_trending_keywords(html, self.base_url)
        if not keywords:
            raise EmptyResultError(f"No trending keywords found on {page_url}")
        logger.info(f"[Collector] Found {len(keywords)} trending keywords")
        return keywords
