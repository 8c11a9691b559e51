from typing import Dict, List, Tuple, Union
from urllib.parse import quote

import pytest

from trending_crawler.db.database import Database
from trending_crawler.errors import FetchError

FRONT_PAGE_URL = "https://namu.wiki/w/나무위키:대문"
CHANNEL_URL = "https://arca.live/b/namuhotnow"


class FakeFetcher:
    """Serves canned HTML by URL; unknown URLs fail like an unreachable page."""

    def __init__(self, pages: Dict[str, Union[str, Exception]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    def fetch(self, url: str) -> str:
        self.calls.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise FetchError(f"no page for {url}")
        return page


def search_url(keyword: str) -> str:
    return f"{CHANNEL_URL}?target=title&keyword={quote(keyword, safe='')}"


def post_url(post_id) -> str:
    return f"{CHANNEL_URL}/{post_id}"


def front_page_html(keywords: List[str]) -> str:
    items = "".join(f'<li><a href="/Go?q={quote(k)}" title="{k}">{k}</a></li>' for k in keywords)
    return f"<html><body><div class='trending'><ul>{items}</ul></div></body></html>"


def search_html(posts: List[Tuple[int, str]]) -> str:
    rows = "".join(
        f'<a class="vrow" href="/b/namuhotnow/{post_id}?p=1">'
        f'<span class="badge">일반</span><span class="title">{title}</span>'
        f'<span class="user-info">작성자</span><span class="col-time">2025-01-01</span>'
        f'<span class="col-view">1,234</span><span class="comment-count">[5]</span></a>'
        for post_id, title in posts
    )
    return f"<html><body><div class='list-table'>{rows}</div></body></html>"


def detail_html(title: str = "사건 정리", body: str = "<p>본문 내용</p>") -> str:
    return f"""
    <html><body>
      <div class="article-head">
        <div class="title"><span class="badge">이슈</span> {title}</div>
        <div class="user-info"><span class="nickname">글쓴이</span></div>
        <span class="date-time">2025-01-01 10:00</span>
        <div class="article-info"><span class="body">2,345</span></div>
      </div>
      <div class="article-content">{body}<script>alert(1)</script><style>p {{ color: red; }}</style></div>
      <div class="comment-wrapper">
        <div class="comment-item">
          <div class="user-info"><span class="nickname">댓글러</span></div>
          <div class="message">  정말   놀랍다
            Unfold ▼ </div>
          <span class="date-time">2025-01-01 11:00</span>
        </div>
        <div class="comment-item"><div class="message">   </div></div>
        <div class="comment-item"><div class="message">이름 없는 댓글</div></div>
      </div>
    </body></html>
    """


def analysis_block(rank: int, keyword: str, summary: str = "요약") -> str:
    return f"""# {rank}위: {keyword}

## 한줄 요약
> {summary}

## 왜 실검에 올랐나?
{keyword} 관련 소식이 전해졌다.

## 여론 및 반응
반응이 뜨겁다.

## 관련 정보
| 항목 | 내용 |
|------|------|
| 분류 | 사건 |
| 관련 인물 | 없음 |
| 발생 시점 | 정보 부족 |
| 관련 키워드 | {keyword}, 이슈 |

## 관련 링크
- [나무위키 문서](https://namu.wiki/w/{keyword}) - 나무위키 문서

## 관련 이미지
- [대표 이미지](https://img.example/{rank}.png)
"""


@pytest.fixture
def database():
    db = Database("sqlite://").open()
    db.init_db()
    yield db
    db.close()


@pytest.fixture
def db_session(database):
    with database.session() as session:
        yield session
