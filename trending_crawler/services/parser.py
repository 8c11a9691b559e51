"""
Parser for the model's markdown analysis.

The response is one block per keyword::

    # 3위: keyword
    ## 한줄 요약
    > headline
    ## 왜 실검에 올랐나?
    ...
    ## 관련 정보
    | 분류 | 사건 |
    ## 관련 링크
    - [title](url) - description
    ## 관련 이미지
    - [description](url)

Parsing is tolerant: a missing section yields an empty value, a block whose
rank is not in the batch is dropped, and nothing in here raises on malformed
text.
"""
import logging
import re
from typing import List, Dict, Sequence

from trending_crawler.schemas import AnalysisResult, RelatedInfo, RelatedLink, RelatedImage, TrendingKeyword

logger = logging.getLogger("parser")

SECTION_SUMMARY = "한줄 요약"
SECTION_REASON = "왜 실검에 올랐나?"
SECTION_OPINION = "여론 및 반응"
SECTION_INFO = "관련 정보"
SECTION_LINKS = "관련 링크"
SECTION_IMAGES = "관련 이미지"

SECTIONS = [SECTION_SUMMARY, SECTION_REASON, SECTION_OPINION, SECTION_INFO, SECTION_LINKS, SECTION_IMAGES]

# info table label -> RelatedInfo field
INFO_LABELS: Dict[str, str] = {
    "분류": "category",
    "관련 인물": "related_people",
    "발생 시점": "occurred_at",
    "관련 키워드": "related_keywords",
}

BLOCK_START = re.compile(r"^[ \t]*#{1,2}[ \t]*(\d+)위[ \t]*:", re.MULTILINE)
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)(?:\s*-\s*(.+))?")
IMAGE_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
QUOTE_MARKER = re.compile(r"^(?:>[ \t]*)+", re.MULTILINE)


def split_blocks(content: str) -> List[str]:
    """Split the response in front of every "# N위:" heading"""
    starts = [m.start() for m in BLOCK_START.finditer(content)]
    return [content[start:end] for start, end in zip(starts, starts[1:] + [len(content)])]


def extract_section(block: str, name: str) -> str:
    """Text between the "## name" header and the next "## " header or end of block"""
    pattern = re.compile(rf"^##[ \t]*{re.escape(name)}[ \t]*\r?\n(.*?)(?=^##(?!#)[ \t]*\S|\Z)", re.IGNORECASE | re.MULTILINE | re.DOTALL)
    match = pattern.search(block)
    return match.group(1).strip() if match else ""


def parse_related_info(block: str) -> RelatedInfo:
    section = extract_section(block, SECTION_INFO)
    values = {}
    for label, field in INFO_LABELS.items():
        match = re.search(rf"^\s*\|\s*{re.escape(label)}\s*\|\s*([^|\n]*)\|", section, re.MULTILINE | re.IGNORECASE)
        values[field] = match.group(1).strip() if match else ""
    return RelatedInfo(**values)


def _bullets(section: str) -> List[str]:
    return [line.strip() for line in section.splitlines() if line.strip().startswith("-")]


def parse_related_links(block: str) -> List[RelatedLink]:
    links = []
    for line in _bullets(extract_section(block, SECTION_LINKS)):
        match = LINK_PATTERN.search(line)
        if match:
            links.append(RelatedLink(
                title=match.group(1).strip(),
                url=match.group(2).strip(),
                description=(match.group(3) or "").strip(),
            ))
    return links


def parse_related_images(block: str) -> List[RelatedImage]:
    images = []
    for line in _bullets(extract_section(block, SECTION_IMAGES)):
        match = IMAGE_PATTERN.search(line)
        if match:
            images.append(RelatedImage(description=match.group(1).strip(), url=match.group(2).strip()))
    return images


def parse_analysis(content: str, terms: Sequence[TrendingKeyword]) -> List[AnalysisResult]:
    """
    Turn the raw response into one AnalysisResult per matched rank.

    When the same rank appears more than once, the first block wins.
    """
    by_rank = {t.rank: t for t in terms}
    parsed: List[AnalysisResult] = []
    seen = set()

    for block in split_blocks(content or ""):
        rank = int(BLOCK_START.match(block).group(1))
        term = by_rank.get(rank)
        if term is None:
            logger.warning(f"[Parser] Block for unknown rank {rank} dropped")
            continue
        if rank in seen:
            logger.warning(f"[Parser] Duplicate block for rank {rank} ignored")
            continue
        seen.add(rank)

        summary = QUOTE_MARKER.sub("", extract_section(block, SECTION_SUMMARY)).strip()
        parsed.append(AnalysisResult(
            rank=rank,
            keyword=term.keyword,
            summary=summary,
            reason=extract_section(block, SECTION_REASON),
            public_opinion=extract_section(block, SECTION_OPINION),
            related_info=parse_related_info(block),
            related_links=parse_related_links(block),
            related_images=parse_related_images(block),
        ))

    logger.info(f"[Parser] Parsed {len(parsed)} of {len(terms)} keywords")
    return parsed
