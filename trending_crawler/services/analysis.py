import json
import logging
from typing import List, Optional, Sequence

import httpx

from trending_crawler.errors import CompletionError
from trending_crawler.schemas import TrendingWithReason
from trending_crawler.services.parser import (
    SECTION_SUMMARY,
    SECTION_REASON,
    SECTION_OPINION,
    SECTION_INFO,
    SECTION_LINKS,
    SECTION_IMAGES,
)

logger = logging.getLogger("analysis")

INSUFFICIENT_INFO = "정보 부족"

SYSTEM_PROMPT = f"""당신은 실시간 검색어를 분석해 뉴스 기사처럼 보도하는 기자입니다.

## 역할
- 각 검색어가 왜 실시간 검색어에 올랐는지 사실 중심으로 전달합니다.
- 제공된 게시글 본문과 댓글만을 근거로 작성합니다.

## 문체 규칙
1. 격식 있는 보도 문체("~했다", "~로 알려졌다")를 사용하세요.
2. 게시글, 커뮤니티, 댓글 등 출처를 직접 언급하지 마세요.
3. 조회수, 댓글 수, 게시 시각 같은 게시글 메타 정보는 쓰지 마세요.

## 출력 규칙
1. 순수 마크다운 텍스트로만 응답하세요.
2. 코드 블록(```)으로 감싸지 마세요.
3. JSON, XML 등 다른 형식을 쓰지 마세요.
4. 서문이나 맺음말 없이 바로 본문을 시작하세요.
5. 검색어마다 아래 템플릿을 순위 순서대로 정확히 반복하세요.
6. 불확실한 정보는 추측하지 말고 "{INSUFFICIENT_INFO}"으로 표기하세요.
7. 내용이 비어 있어도 모든 섹션 제목을 반드시 출력하세요.

## 출력 템플릿

# [순위]위: [검색어]

## {SECTION_SUMMARY}
> [핵심 내용을 헤드라인처럼 한 문장으로]

## {SECTION_REASON}
[배경과 경위를 2-3문단으로]

## {SECTION_OPINION}
[대중의 반응을 1-3문단으로. 반응이 없으면 "댓글 없음"]

## {SECTION_INFO}
| 항목 | 내용 |
|------|------|
| 분류 | [인물/사건/이슈/엔터/스포츠/정치/경제/게임/IT 등] |
| 관련 인물 | [없으면 "없음"] |
| 발생 시점 | [모르면 "{INSUFFICIENT_INFO}"] |
| 관련 키워드 | [연관 검색어, 쉼표로 구분] |

## {SECTION_LINKS}
- [나무위키 문서](url 필드값) - 나무위키 문서
- [실검 이유 게시글](reason.url 필드값) - 관련 게시글

## {SECTION_IMAGES}
- [이미지 설명](이미지 url)
"""


def build_messages(terms: Sequence[TrendingWithReason]) -> List[dict]:
    """Build a single chat request covering the whole batch"""
    batch = json.dumps([t.model_dump() for t in terms], ensure_ascii=False, indent=2)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": "아래 실시간 검색어 데이터를 분석해주세요. 각 항목의 reason 필드에 관련 게시글의 본문과 댓글이 들어 있습니다:\n\n" + batch,
        },
    ]


class AnalysisClient:
    """Chat-completions client for an OpenAI-compatible endpoint."""

    def __init__(self, api_key: Optional[str], model: str, base_url: str = "https://api.openai.com/v1",
                 timeout: float = 300.0, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.client = None

    def open(self):
        if self.client is None:
            self.client = httpx.Client(timeout=self.timeout, transport=self.transport)
        return self

    def close(self):
        if self.client is not None:
            self.client.close()
            self.client = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def complete(self, messages: List[dict]) -> str:
        if self.client is None:
            self.open()
        payload = {"model": self.model, "messages": messages, "stream": False}
        try:
            response = self.client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"[LLM] Request failed: {e}")
            raise CompletionError(f"Completion request failed: {e}", original_error=e) from e

        if response.status_code != 200:
            logger.error(f"[LLM] Error - Status Code: {response.status_code}")
            logger.error(f"[LLM] Response: {response.text[:500]}")
            raise CompletionError(f"Completion API returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError("Completion API returned a non-JSON body", original_error=e) from e
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            logger.warning("[LLM] Response has no message content")
            return ""

    def analyze(self, terms: Sequence[TrendingWithReason]) -> str:
        logger.info(f"[LLM] Analyzing {len(terms)} trending keywords with {self.model}")
        content = self.complete(build_messages(terms))
        logger.info(f"[LLM] Analysis received ({len(content)} chars)")
        return content
