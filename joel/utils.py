"""Utility functions for JOEL: dates, names and message text."""

import math
import re
import unicodedata
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

SPLIT_MARKER = "\\split"

FRENCH_MONTHS = (
    "janvier",
    "février",
    "mars",
    "avril",
    "mai",
    "juin",
    "juillet",
    "août",
    "septembre",
    "octobre",
    "novembre",
    "décembre",
)

_WHITESPACE_RE = re.compile(r"\s+")
_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_BOLD_RE = re.compile(r"\*([^*\n]+)\*")
_ITALIC_RE = re.compile(r"(?<![\w/])_([^_\n]+)_(?![\w/])")
_EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U0000FE0F"
    "\U0000200D"
    "]+"
)
_LIGATURES = {"æ": "ae", "Æ": "AE", "œ": "oe", "Œ": "OE", "ß": "ss"}


def jorf_to_date(value: str) -> date:
    """Parse a JORF date string (YYYY-MM-DD)."""
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def date_to_jorf(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def date_to_french_string(value: date) -> str:
    """Format a date the way French readers expect, e.g. 15 janvier 2023."""
    return f"{value.day} {FRENCH_MONTHS[value.month - 1]} {value.year}"


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def latest_source_date(records: Iterable) -> Optional[datetime]:
    """Most recent publication timestamp among records, None when empty."""
    dates = [record.published_at for record in records]
    return max(dates) if dates else None


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def clean_people_name(name: str) -> str:
    """Normalize a person name for comparison.

    Case-folds, strips diacritics, turns hyphens and apostrophes into spaces
    and collapses whitespace, so "François-José  MÜLLER" and
    "francois jose muller" compare equal.
    """
    if not name:
        return ""
    text = strip_accents(unicodedata.normalize("NFKC", name)).casefold()
    text = re.sub(r"[-'’‐‑]", " ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def person_name_key(surname: str, given_name: str) -> str:
    """Storage key identifying a canonical person."""
    return f"{clean_people_name(surname)}|{clean_people_name(given_name)}"


def split_text(text: str, max_length: float) -> List[str]:
    """Split a message into chunks no longer than max_length.

    A literal \\split marker forces a break and is removed. Chunks are cut at
    the last whitespace that fits when there is one. Empty chunks are dropped.
    """
    if max_length is None or max_length <= 0 or math.isinf(max_length):
        return [text]

    limit = int(max_length)
    chunks: List[str] = []
    for segment in text.split(SPLIT_MARKER):
        while len(segment) > limit:
            window = segment[: limit + 1]
            cut = max(window.rfind(" "), window.rfind("\n"))
            if cut <= 0:
                chunks.append(segment[:limit])
                segment = segment[limit:]
            else:
                chunks.append(segment[:cut])
                segment = segment[cut + 1 :]
        if segment:
            chunks.append(segment)
    return chunks


def markdown_to_plain_text(text: str) -> str:
    """Render markdown as plain ASCII-friendly text for clients without markup."""
    text = _MARKDOWN_LINK_RE.sub(r"\1: \2", text)
    text = _EMOJI_RE.sub("", text)
    for ligature, replacement in _LIGATURES.items():
        text = text.replace(ligature, replacement)
    text = strip_accents(text)
    text = text.replace("*", "").replace("_", "")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    return "\n".join(lines)


def markdown_to_whatsapp(text: str) -> str:
    """Rewrite markdown links, which WhatsApp does not render, as title + URL."""
    return _MARKDOWN_LINK_RE.sub(r"*\1*\n\2", text)


def markdown_to_html(text: str) -> str:
    """Convert the small markdown subset used in digests to HTML."""
    text = (
        text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    )
    text = _MARKDOWN_LINK_RE.sub(
        r'<a href="\2" rel="noopener noreferrer">\1</a>', text
    )
    text = _BOLD_RE.sub(r"<strong>\1</strong>", text)
    text = _ITALIC_RE.sub(r"<em>\1</em>", text)
    return text.replace("\n", "<br>")


def format_duration(delay: timedelta) -> str:
    """Human readable duration, e.g. "1 day, 2 hours, 5 minutes"."""
    total_ms = abs(int(delay.total_seconds() * 1000))
    parts = (
        ("day", total_ms // 86_400_000),
        ("hour", total_ms // 3_600_000 % 24),
        ("minute", total_ms // 60_000 % 60),
        ("second", total_ms // 1000 % 60),
        ("millisecond", total_ms % 1000),
    )
    return ", ".join(
        f"{value} {unit}{'' if value == 1 else 's'}" for unit, value in parts if value
    )
