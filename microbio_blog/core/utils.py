import math
import re
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple, Union

from slugify import slugify

WORDS_PER_MINUTE = 200
MAX_KEYWORDS = 10
STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "from", "into", "have", "been", "were", "their", "there",
})

BASE64_IMAGE_RE = re.compile(r"^data:image/(jpeg|jpg|png|gif|webp);base64,", re.IGNORECASE)

SORTABLE_FIELDS = {
    "created_at": "created_at",
    "published_at": "published_at",
    "updated_at": "updated_at",
    "views": "views",
    "likes": "likes_count",
    "comments": "comments",
    "title": "title",
    "offense_reported_at": "offense_reported_at",
}


def utcnow() -> datetime:
    # Naive UTC, which is what MongoDB hands back on reads.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_slug(text: str) -> str:
    return slugify(text) or "post"


def unique_slug_suffix() -> str:
    """Base-36 millisecond timestamp, short and monotonic enough for slug collisions."""
    value = int(time.time() * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def count_words(content: str) -> int:
    return len(content.split())


def estimate_read_time(word_count: int) -> int:
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))


def extract_keywords(*parts: Optional[str]) -> List[str]:
    text = " ".join(p for p in parts if p).lower()
    keywords: List[str] = []
    for word in text.split():
        if len(word) <= 3 or word in STOP_WORDS or not word.isalpha() or not word.isascii():
            continue
        if word not in keywords:
            keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords


def derived_content_fields(title: str, excerpt: str, content: str) -> dict:
    """Fields recomputed whenever title, excerpt or content change."""
    word_count = count_words(content)
    return {
        "word_count": word_count,
        "read_time": estimate_read_time(word_count),
        "keywords": extract_keywords(title, excerpt, content),
    }


def parse_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    parsed: List[str] = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if tag and tag not in parsed:
            parsed.append(tag)
    return parsed


def is_base64_image(value: Optional[str]) -> bool:
    return bool(value) and bool(BASE64_IMAGE_RE.match(value))


def is_hosted_url(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(("http://", "https://"))


def parse_sort(sort: str) -> List[Tuple[str, int]]:
    """Turn ``-views`` style sort strings into a Mongo sort spec.

    Unknown fields raise ``ValueError``; an empty string means newest first.
    """
    spec: List[Tuple[str, int]] = []
    for part in (sort or "-created_at").split(","):
        part = part.strip()
        if not part:
            continue
        direction = -1 if part.startswith("-") else 1
        field = SORTABLE_FIELDS.get(part.lstrip("-+"))
        if field is None:
            raise ValueError(f"Cannot sort by '{part.lstrip('-+')}'")
        spec.append((field, direction))
    if not spec:
        spec.append(("created_at", -1))
    return spec


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
