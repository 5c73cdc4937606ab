"""Tolerant decoding of JSON response bodies into typed shapes.

Some upstream APIs (and the proxies in front of them) return bodies that are
almost JSON: a byte-order mark up front, or an HTML error page or log lines
appended after the document. ``decode_lenient`` recovers the first complete
JSON value from such a body and validates it against a pydantic-compatible
shape, trying a short list of strategies in order.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")

BOM = "\ufeff"
PREVIEW_LIMIT = 1200
PREVIEW_ELLIPSIS = "…"
OPENERS = "{["
CLOSERS = "}]"


class LenientDecodeError(ValueError):
    """Raised when no strategy could decode the body into the requested shape.

    ``error`` is the failure from decoding the whole trimmed body, which is
    also chained as ``__cause__``. ``preview`` is the raw body cut to
    ``PREVIEW_LIMIT`` characters.
    """

    def __init__(self, error: ValidationError, preview: str) -> None:
        super().__init__(f"failed to decode response body: {_first_error_message(error)}")
        self.error = error
        self.preview = preview


def _first_error_message(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    return str(details[0].get("msg", error))


def trim_body(raw: str) -> str:
    return raw.lstrip(BOM).strip()


def body_preview(raw: str, limit: int = PREVIEW_LIMIT) -> str:
    if len(raw) <= limit:
        return raw
    return raw[:limit] + PREVIEW_ELLIPSIS


def first_json_slice(text: str) -> str | None:
    """Return the first depth-balanced ``{...}`` or ``[...]`` value in ``text``.

    Brackets and quotes inside string literals are ignored. Returns ``None``
    when there is no opener, when a closer shows up with nothing open, or
    when the text ends before the value is closed.
    """
    start = -1
    for index, char in enumerate(text):
        if char in OPENERS:
            start = index
            break
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in OPENERS:
            depth += 1
        elif char in CLOSERS:
            if depth == 0:
                return None
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def truncate_at_last_closer(text: str) -> str | None:
    end = max(text.rfind("}"), text.rfind("]"))
    if end == -1:
        return None
    return text[: end + 1]


def decode_lenient(body: str, shape: type[T] | Any) -> T:
    """Decode ``body`` into ``shape``, tolerating noise around the JSON value.

    Strategies, first success wins:

    1. the whole body with the BOM and surrounding whitespace removed;
    2. the first bracket-balanced value found in that text;
    3. the text cut after its last ``}`` or ``]``.

    Raises:
        LenientDecodeError: all strategies failed. Carries the error from the
            first strategy and a bounded preview of ``body``.
    """
    adapter: TypeAdapter[T] = TypeAdapter(shape)
    trimmed = trim_body(body)

    try:
        return adapter.validate_json(trimmed)
    except ValidationError as exc:
        direct_error = exc

    fallbacks: tuple[Callable[[str], str | None], ...] = (
        first_json_slice,
        truncate_at_last_closer,
    )
    for candidate_for in fallbacks:
        candidate = candidate_for(trimmed)
        if candidate is None:
            continue
        try:
            return adapter.validate_json(candidate)
        except ValidationError:
            continue

    raise LenientDecodeError(direct_error, body_preview(body)) from direct_error


__all__ = [
    "LenientDecodeError",
    "body_preview",
    "decode_lenient",
    "first_json_slice",
    "trim_body",
    "truncate_at_last_closer",
]
