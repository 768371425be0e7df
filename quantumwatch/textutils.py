"""Small deterministic text helpers: language guess, filenames, durations, truncation."""
import math
import re

FRENCH_WORDS = ["le", "la", "les", "un", "une", "des", "et", "est", "sont", "dans"]
ENGLISH_WORDS = ["the", "a", "an", "and", "is", "are", "in", "on", "with", "for"]

# Word boundaries are ASCII-only so accented letters count as separators.
_FRENCH_PATTERNS = [re.compile(rf"\b{w}\b", re.ASCII) for w in FRENCH_WORDS]
_ENGLISH_PATTERNS = [re.compile(rf"\b{w}\b", re.ASCII) for w in ENGLISH_WORDS]

CHARS_PER_SECOND = 15
TRUNCATION_MARKER = "... (truncated)"


def _count(patterns: list[re.Pattern], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)


def detect_language(text: str | None) -> str:
    """Guess 'fr' or 'en' by counting common function words.

    French wins only on a strictly higher count; ties and texts with no
    marker words at all are English.
    """
    lower_text = (text or "").lower()
    french_count = _count(_FRENCH_PATTERNS, lower_text)
    english_count = _count(_ENGLISH_PATTERNS, lower_text)
    return "fr" if french_count > english_count else "en"


def sanitize_filename(name: str) -> str:
    """Turn a title into a filesystem-safe slug.

    >>> sanitize_filename("Hello, World! --Test__2024")
    'hello-world-test-2024'
    """
    slug = name.strip().lower()
    slug = re.sub(r"[^A-Za-z0-9_\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return re.sub(r"^-+|-+$", "", slug)


def estimate_duration(text: str) -> int:
    """Estimated speech length in seconds (character count proxy)."""
    return math.ceil(len(text) / CHARS_PER_SECOND)


def truncate(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut text so that it, marker included, fits within limit characters."""
    if len(text) <= limit:
        return text
    return text[: max(limit - len(marker), 0)] + marker
