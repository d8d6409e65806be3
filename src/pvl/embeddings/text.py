"""Text preparation for embedding generation.

Builds a single string from video metadata (title, channel, tags, description,
thumbnail OCR text) and normalizes free text before it reaches the encoder.
"""

import re

from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

MAX_TEXT_LENGTH = 1000
MAX_TAGS = 10
MIN_DESCRIPTION_SPACE = 50
MIN_OCR_SPACE = 20
SEPARATOR_BUFFER = 2
MAX_CONSECUTIVE_EMOJI = 3
MAX_TOTAL_EMOJI = 10

GENERIC_TAGS = frozenset({
    "shorts", "short", "viral", "trending", "fyp", "foryou", "foryoupage",
    "youtube", "video", "videos", "subscribe", "like", "new", "2024", "2025",
})

# Words that say nothing about what a video is about.
VIDEO_STOPWORDS = frozenset({
    "video", "videos", "watch", "channel", "subscribe", "episode", "official",
    "full", "new", "part", "vs", "ft", "feat", "hd", "4k", "live", "today",
    "youtube", "shorts", "like", "comment", "share",
})

STOPWORDS = frozenset(ENGLISH_STOP_WORDS) | VIDEO_STOPWORDS

_URL_RE = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
_HTML_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_PUNCT_RUN_RE = re.compile(r"([!?.]){3,}")
_SPAM_RE = re.compile(
    r"(follow|subscribe|like|share|comment)\s+(me|us|for|to|and|if|the|my|our)[^.!?]*[.!?]?",
    re.IGNORECASE,
)
_EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F000-\U0001F2FF]")


def build_text(
    title: str,
    channel_name: str | None = None,
    tags: list[str] | None = None,
    description: str | None = None,
    ocr_text: str | None = None,
    max_length: int = MAX_TEXT_LENGTH,
) -> str:
    """Combine item metadata into one embedding-ready string.

    Components are added in priority order: title (always kept in full),
    channel, tags, description and finally OCR text. The description and OCR
    text only get whatever space the earlier components leave over.

    Args:
        title: Video title.
        channel_name: Channel the video was published on.
        tags: Raw tags; filtered by :func:`process_tags`.
        description: Free-form description; cleaned by :func:`clean_description`.
        ocr_text: Text recognized on the thumbnail.
        max_length: Character budget of the result.

    Returns:
        Newline-joined text, at most ``max_length`` characters.
    """
    components: list[str] = []

    cleaned_title = clean_text(title or "")
    if cleaned_title:
        components.append(cleaned_title)

    if channel_name:
        cleaned_channel = clean_text(channel_name)
        if cleaned_channel:
            components.append(f"by {cleaned_channel}")

    if tags:
        processed = process_tags(tags)
        if processed:
            components.append(" ".join(processed))

    remaining = max(0, max_length - len("\n".join(components)) - SEPARATOR_BUFFER)
    if description and remaining > MIN_DESCRIPTION_SPACE:
        truncated = truncate_at_word_boundary(clean_description(description), remaining)
        if truncated:
            components.append(truncated)

    remaining = max(0, max_length - len("\n".join(components)) - SEPARATOR_BUFFER)
    if ocr_text and remaining > MIN_OCR_SPACE:
        truncated = truncate_at_word_boundary(clean_text(ocr_text), remaining)
        if truncated:
            components.append(truncated)

    return "\n".join(components)[:max_length]


def clean_text(text: str) -> str:
    """Collapse whitespace, cap emoji runs and trim."""
    cleaned = _WS_RE.sub(" ", text)
    cleaned = _limit_emoji(cleaned)
    return cleaned.strip()


def clean_description(text: str) -> str:
    """Strip URLs, markup, punctuation runs and subscribe spam from a description."""
    cleaned = _URL_RE.sub("", text)
    cleaned = strip_html(cleaned)
    cleaned = _PUNCT_RUN_RE.sub(r"\1", cleaned)
    cleaned = _SPAM_RE.sub("", cleaned)
    return clean_text(cleaned)


def process_tags(tags: list[str]) -> list[str]:
    """Lowercase, dedupe and drop generic or single-character tags."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        cleaned = tag.lower().strip()
        if len(cleaned) <= 1 or cleaned in seen or cleaned in GENERIC_TAGS:
            continue
        seen.add(cleaned)
        result.append(cleaned)
        if len(result) >= MAX_TAGS:
            break
    return result


def strip_html(text: str) -> str:
    """Remove HTML markup, keeping the visible text."""
    if not _HTML_RE.search(text):
        return text

    from bs4 import BeautifulSoup

    soup = BeautifulSoup(text, "lxml")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def prepare_text(text: str, max_chars: int = MAX_TEXT_LENGTH) -> str:
    """Normalize text right before encoding.

    Lowercases, removes URLs and HTML, collapses whitespace and truncates to
    ``max_chars``. Returns an empty string when nothing meaningful is left.
    """
    cleaned = _URL_RE.sub(" ", text or "")
    cleaned = strip_html(cleaned)
    cleaned = _WS_RE.sub(" ", cleaned).strip().lower()
    return truncate_at_word_boundary(cleaned, max_chars)


def truncate_at_word_boundary(text: str, max_length: int) -> str:
    """Truncate near ``max_length`` without cutting a word in half."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space]
    return truncated


def _limit_emoji(text: str) -> str:
    total = 0
    consecutive = 0
    out = []
    for ch in text:
        if _EMOJI_RE.match(ch):
            consecutive += 1
            if consecutive <= MAX_CONSECUTIVE_EMOJI and total < MAX_TOTAL_EMOJI:
                out.append(ch)
                total += 1
        else:
            consecutive = 0
            out.append(ch)
    return "".join(out)


def tokenize(text: str) -> list[str]:
    """Lowercase whitespace tokens with stopwords removed."""
    return [tok for tok in (text or "").lower().split() if tok not in STOPWORDS]
