from __future__ import annotations

from typing import Any

import pytest
from common.lenient_json import (
    LenientDecodeError,
    body_preview,
    decode_lenient,
    first_json_slice,
    trim_body,
    truncate_at_last_closer,
)
from pydantic import BaseModel, Field, ValidationError

pytestmark = pytest.mark.unit


class Listing(BaseModel):
    job_id: str
    job_title: str | None = None


class ListingPage(BaseModel):
    data: list[Listing] = Field(default_factory=list)


class Strict(BaseModel):
    a: int


def test_clean_body_decodes_directly() -> None:
    body = '{"data": [{"job_id": "a", "job_title": "Backend Engineer", "extra": 1}]}'
    page = decode_lenient(body, ListingPage)
    assert page == ListingPage(data=[Listing(job_id="a", job_title="Backend Engineer")])


def test_bom_and_whitespace_are_stripped_before_decoding() -> None:
    page = decode_lenient('\ufeff  {"data": [{"job_id":"a"}]}', ListingPage)
    assert [listing.job_id for listing in page.data] == ["a"]


def test_trailing_html_is_ignored() -> None:
    page = decode_lenient('{"data":[]}<html>Error page</html>', ListingPage)
    assert page.data == []


def test_empty_object_uses_defaults() -> None:
    assert decode_lenient("{}", ListingPage) == ListingPage()


@pytest.mark.parametrize(
    "trailer",
    [
        "\n2024-01-01 WARN upstream slow",
        "<html><body>}}]]</body></html>",
        '{"data": [{"job_id": "other"}]}',
        ' "unterminated',
    ],
)
def test_trailing_noise_does_not_change_the_result(trailer: str) -> None:
    document = '{"data": [{"job_id": "a", "job_title": "x } ] \\" {"}]}'
    expected = decode_lenient(document, ListingPage)
    assert decode_lenient(document + trailer, ListingPage) == expected


def test_decoding_is_deterministic() -> None:
    body = '  [{"job_id": "a"}, {"job_id": "b"}] trailing'
    first = decode_lenient(body, list[Listing])
    second = decode_lenient(body, list[Listing])
    assert first == second
    assert [listing.job_id for listing in first] == ["a", "b"]


def test_generic_shapes_are_supported() -> None:
    payload = decode_lenient('\ufeff{"meta": {"nextToken": "t1"}, "data": []} junk', dict[str, Any])
    assert payload == {"meta": {"nextToken": "t1"}, "data": []}


def test_empty_body_fails_with_empty_preview() -> None:
    with pytest.raises(LenientDecodeError) as exc_info:
        decode_lenient("", ListingPage)
    assert exc_info.value.preview == ""
    assert str(exc_info.value)


def test_non_json_body_fails_with_full_preview() -> None:
    with pytest.raises(LenientDecodeError) as exc_info:
        decode_lenient("not json at all", ListingPage)
    assert exc_info.value.preview == "not json at all"


def test_unbalanced_opener_fails_with_message() -> None:
    with pytest.raises(LenientDecodeError) as exc_info:
        decode_lenient("{", ListingPage)
    assert str(exc_info.value).startswith("failed to decode response body")


def test_failure_carries_the_direct_decode_error() -> None:
    with pytest.raises(LenientDecodeError) as exc_info:
        decode_lenient('{"a": "not a number"} trailing', Strict)
    error = exc_info.value
    assert isinstance(error.error, ValidationError)
    assert error.__cause__ is error.error


def test_shape_mismatch_is_reported_even_for_valid_json() -> None:
    with pytest.raises(LenientDecodeError):
        decode_lenient('{"data": "nope"}', ListingPage)


def test_long_body_preview_is_bounded() -> None:
    body = '{"a": "' + "x" * 5000 + '"'
    with pytest.raises(LenientDecodeError) as exc_info:
        decode_lenient(body, Strict)
    preview = exc_info.value.preview
    assert len(preview) == 1201
    assert preview == body[:1200] + "…"


def test_body_preview_keeps_short_bodies_untouched() -> None:
    assert body_preview("x" * 1200) == "x" * 1200
    assert body_preview("x" * 1201) == "x" * 1200 + "…"


def test_trim_body_removes_leading_bom_then_whitespace() -> None:
    assert trim_body("\ufeff\ufeff \n {} \t") == "{}"


def test_first_json_slice_returns_first_value_only() -> None:
    assert first_json_slice('log: {"a": [1, 2]} {"b": 3}') == '{"a": [1, 2]}'
    assert first_json_slice("[[1], [2]], [3]") == "[[1], [2]]"


def test_first_json_slice_ignores_brackets_inside_strings() -> None:
    text = '{"a": "}]{[", "b": "\\\\"} tail }'
    assert first_json_slice(text) == '{"a": "}]{[", "b": "\\\\"}'


def test_first_json_slice_respects_escaped_quotes() -> None:
    assert first_json_slice('{"a":"\\""} rest') == '{"a":"\\""}'


@pytest.mark.parametrize("text", ["", "no brackets here", '{"a": "b', "{{}", "closing only }"])
def test_first_json_slice_returns_none_without_balanced_value(text: str) -> None:
    assert first_json_slice(text) is None


def test_truncate_at_last_closer_keeps_prefix_through_last_delimiter() -> None:
    assert truncate_at_last_closer('{"a": [1]} trailing') == '{"a": [1]}'
    assert truncate_at_last_closer("[1, 2] x ] y") == "[1, 2] x ]"
    assert truncate_at_last_closer("no closers") is None


def test_first_json_slice_opener_search_does_not_skip_strings() -> None:
    assert first_json_slice('"{}"') == "{}"
    assert decode_lenient('"{}"', dict[str, Any]) == {}
