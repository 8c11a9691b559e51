import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import quote

from bs4 import BeautifulSoup

from trending_crawler.schemas import ForumComment, ForumPost, PostDetail

logger = logging.getLogger("forum")

ANONYMOUS = "익명"

# Pinned notices and promotions carry low post ids
DEFAULT_MIN_POST_ID = 100000000

COLLAPSED_MARKER = re.compile(r"Unfold\s*▼")
WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Found:
    post: PostDetail


@dataclass(frozen=True)
class NotFound:
    keyword: str


@dataclass(frozen=True)
class Failed:
    keyword: str
    error: Exception


EnrichmentOutcome = Union[Found, NotFound, Failed]


def _text(node, selector: str) -> str:
    found = node.select_one(selector)
    return found.get_text().strip() if found else ""


def _to_int(text: str) -> int:
    try:
        return int(re.sub(r"[,\[\]\s]", "", text))
    except ValueError:
        return 0


def clean_comment(text: str) -> str:
    """Remove the "Unfold" toggle label and collapse whitespace runs"""
    return WHITESPACE.sub(" ", COLLAPSED_MARKER.sub("", text)).strip()


def parse_search_results(html: str, base_url: str, channel: str, min_post_id: int = DEFAULT_MIN_POST_ID) -> List[ForumPost]:
    """Parse a channel search page into user posts, dropping notices"""
    soup = BeautifulSoup(html, "html.parser")
    id_pattern = re.compile(rf"/b/{re.escape(channel)}/(\d+)")
    posts: List[ForumPost] = []

    for row in soup.select("a.vrow"):
        href = row.get("href")
        title = _text(row, ".title")
        if not href or not title or "undefined" in href:
            continue
        match = id_pattern.search(href)
        if not match:
            continue
        post_id = match.group(1)
        if int(post_id) <= min_post_id:
            continue

        posts.append(ForumPost(
            id=post_id,
            title=title,
            url=base_url + href.split("?")[0],
            badge=_text(row, ".badge"),
            author=_text(row, ".user-info") or ANONYMOUS,
            created_at=_text(row, ".col-time"),
            view_count=_to_int(_text(row, ".col-view")),
            comment_count=_to_int(_text(row, ".comment-count")),
        ))

    return posts


def parse_post_detail(html: str, post_id: str, post_url: str) -> PostDetail:
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    badge = ""
    title_node = soup.select_one(".article-head .title")
    if title_node is not None:
        badge = _text(title_node, ".badge")
        title = title_node.get_text().strip()
        if badge:
            title = title.replace(badge, "", 1).strip()

    content = ""
    article = soup.select_one(".article-content")
    if article is not None:
        for tag in article.select("script, style"):
            tag.decompose()
        content = article.decode_contents().strip()

    comments: List[ForumComment] = []
    for item in soup.select(".comment-wrapper .comment-item"):
        message = clean_comment(_text(item, ".message"))
        if not message:
            continue
        comments.append(ForumComment(
            author=_text(item, ".user-info .nickname") or ANONYMOUS,
            content=message,
            created_at=_text(item, ".date-time"),
        ))

    return PostDetail(
        id=post_id,
        title=title,
        url=post_url,
        badge=badge,
        author=_text(soup, ".article-head .user-info .nickname"),
        created_at=_text(soup, ".article-head .date-time"),
        view_count=_to_int(_text(soup, ".article-head .article-info .body")),
        comment_count=len(comments),
        content=content,
        comments=comments,
    )


class ForumEnricher:
    """
    Looks up the discussion thread that explains why a keyword is trending.

    The forum's title search is ordered by recency; the first user post wins.
    """

    def __init__(self, fetcher, base_url: str = "https://arca.live", channel: str = "namuhotnow",
                 min_post_id: int = DEFAULT_MIN_POST_ID):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.channel = channel
        self.channel_url = f"{self.base_url}/b/{channel}"
        self.min_post_id = min_post_id

    def search_posts(self, keyword: str) -> List[ForumPost]:
        search_url = f"{self.channel_url}?target=title&keyword={quote(keyword, safe='')}"
        html = self.fetcher.fetch(search_url)
        return parse_search_results(html, self.base_url, self.channel, self.min_post_id)

    def get_post_detail(self, post_id: str) -> PostDetail:
        post_url = f"{self.channel_url}/{post_id}"
        html = self.fetcher.fetch(post_url)
        return parse_post_detail(html, post_id, post_url)

    def lookup(self, keyword: str) -> EnrichmentOutcome:
        logger.info(f"[Forum] Searching reason for \"{keyword}\"")
        try:
            posts = self.search_posts(keyword)
            if not posts:
                logger.info(f"[Forum] No post found for \"{keyword}\"")
                return NotFound(keyword)
            first = posts[0]
            logger.info(f"[Forum] Fetching post detail: {first.title}")
            return Found(self.get_post_detail(first.id))
        except Exception as e:
            logger.warning(f"[Forum] Enrichment failed for \"{keyword}\": {e}")
            return Failed(keyword, e)

    def enrich(self, keyword: str) -> Optional[PostDetail]:
        outcome = self.lookup(keyword)
        return outcome.post if isinstance(outcome, Found) else None
