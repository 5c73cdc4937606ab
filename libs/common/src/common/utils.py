from __future__ import annotations

from datetime import UTC, datetime


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def none_if_blank(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def word_preview(text: str, max_words: int = 100) -> str:
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + " ..."


def clean_semicolon_list(value: str | None, allowed: tuple[str, ...] | None = None) -> str | None:
    """Normalise a ``;`` separated list, optionally keeping only ``allowed`` items.

    Blank items are dropped, as are consecutive repeats. Returns ``None`` when
    nothing is left.
    """
    stripped = none_if_blank(value)
    if stripped is None:
        return None
    items: list[str] = []
    for raw_item in stripped.split(";"):
        item = raw_item.strip()
        if not item:
            continue
        if allowed is not None and item not in allowed:
            continue
        if items and items[-1] == item:
            continue
        items.append(item)
    return ";".join(items) or None
