from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import jobfinder.clients as clients
import pytest
from jobfinder.clients import (
    EMPTY_COMPLETION_TEXT,
    ApiClientError,
    JSearchClient,
    LinkedInClient,
    OpenAIClient,
    build_cover_letter_prompt,
    cover_letter_language,
)
from jobfinder.models import Job

pytestmark = pytest.mark.unit


class StubResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text


class StubAsyncClient:
    def __init__(self, response: StubResponse | Exception, calls: list[dict[str, Any]]) -> None:
        self.response = response
        self.calls = calls

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(self, method: str, url: str, **kwargs: Any) -> StubResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def install_stub(
    monkeypatch: pytest.MonkeyPatch,
    response: StubResponse | Exception,
) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        clients.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response, calls),
    )
    return calls


JSEARCH_BODY = json.dumps(
    {
        "status": "OK",
        "request_id": "req-1",
        "data": [
            {
                "job_id": "abc",
                "job_title": "Python Developer",
                "employer_name": "Acme",
                "job_is_remote": True,
                "job_highlights": {"Qualifications": ["Python"]},
                "apply_options": [
                    {"publisher": "Acme", "apply_link": "https://acme.example/apply", "is_direct": True}
                ],
            }
        ],
    }
)


def test_jsearch_search_tolerates_trailing_noise(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_stub(monkeypatch, StubResponse(200, JSEARCH_BODY + "\n<!-- cached -->"))
    client = JSearchClient("key-1", host="jsearch.example")

    result = asyncio.run(
        client.search(
            "python",
            page=2,
            num_pages=1,
            date_posted="week",
            country="ID",
            language="en",
        )
    )

    assert result.request_id == "req-1"
    job = result.data[0]
    assert job.job_id == "abc"
    assert job.job_is_remote is True
    assert job.job_highlights_json == {"Qualifications": ["Python"]}
    assert job.apply_options[0].apply_link == "https://acme.example/apply"

    call = calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://jsearch.example/search"
    assert ("page", "2") in call["params"]
    assert ("date_posted", "week") in call["params"]
    assert call["headers"]["X-RapidAPI-Key"] == "key-1"
    assert call["headers"]["X-RapidAPI-Host"] == "jsearch.example"


def test_jsearch_without_key_fails_before_any_request(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_stub(monkeypatch, StubResponse(200, JSEARCH_BODY))
    client = JSearchClient("")

    with pytest.raises(ApiClientError, match="RAPIDAPI_KEY is not configured"):
        asyncio.run(
            client.search("x", page=1, num_pages=1, date_posted="all", country="ID", language="en")
        )
    assert calls == []


def test_jsearch_http_error_reports_status(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(429, "slow down"))
    client = JSearchClient("key-1")

    with pytest.raises(ApiClientError, match="JSearch returned HTTP 429"):
        asyncio.run(
            client.search("x", page=1, num_pages=1, date_posted="all", country="ID", language="en")
        )


def test_jsearch_undecodable_body_carries_preview(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(200, "<html>gateway timeout</html>"))
    client = JSearchClient("key-1")

    with pytest.raises(ApiClientError) as excinfo:
        asyncio.run(
            client.search("x", page=1, num_pages=1, date_posted="all", country="ID", language="en")
        )

    message = str(excinfo.value)
    assert message.startswith(
        "failed to decode RapidAPI response (possibly trailing data). Preview:\n"
    )
    assert message.endswith("<html>gateway timeout</html>")


def test_transport_errors_become_client_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, httpx.ConnectError("connection refused"))
    client = LinkedInClient("key-1")

    with pytest.raises(ApiClientError, match="request failed: connection refused"):
        asyncio.run(client.get_job("42"))


def test_linkedin_search_sends_only_non_blank_filters(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_stub(monkeypatch, StubResponse(200, '{"data": []} trailing'))
    client = LinkedInClient("key-1")

    payload = asyncio.run(
        client.search(
            " kotlin ",
            experience_levels="entry;midSenior",
            workplace_types="  ",
            location="Worldwide",
            date_posted="month",
            next_token=None,
        )
    )

    assert payload == {"data": []}
    call = calls[0]
    assert call["url"] == "https://jobs-api14.p.rapidapi.com/v2/linkedin/search"
    assert call["params"] == [
        ("query", "kotlin"),
        ("experienceLevels", "entry;midSenior"),
        ("location", "Worldwide"),
        ("datePosted", "month"),
    ]
    assert call["headers"]["x-rapidapi-key"] == "key-1"


def test_linkedin_http_error_includes_body(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(403, '{"message": "quota exceeded"}'))
    client = LinkedInClient("key-1")

    with pytest.raises(ApiClientError, match="HTTP 403: .*quota exceeded"):
        asyncio.run(client.get_job("42"))


def test_linkedin_invalid_json_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(200, "not json at all"))
    client = LinkedInClient("key-1")

    with pytest.raises(ApiClientError, match="invalid JSON: not json at all"):
        asyncio.run(client.get_job("42"))


def test_openai_completion_returns_first_choice(monkeypatch: pytest.MonkeyPatch) -> None:
    body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "Score: 80%"}}]})
    calls = install_stub(monkeypatch, StubResponse(200, body))
    client = OpenAIClient("sk-test", model="gpt-test")

    result = asyncio.run(client.analyze_match("Python engineer", "Build APIs"))

    assert result == "Score: 80%"
    call = calls[0]
    assert call["method"] == "POST"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["json"]["model"] == "gpt-test"
    assert [message["role"] for message in call["json"]["messages"]] == ["system", "user"]
    assert "Python engineer" in call["json"]["messages"][1]["content"]


def test_openai_empty_choices_yield_placeholder(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(200, '{"choices": []}'))
    client = OpenAIClient("sk-test")

    assert asyncio.run(client.complete("system", "user")) == EMPTY_COMPLETION_TEXT


def test_openai_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(monkeypatch, StubResponse(500, "boom"))
    client = OpenAIClient("sk-test")

    with pytest.raises(ApiClientError, match="OpenAI returned HTTP 500"):
        asyncio.run(client.complete("system", "user"))


@pytest.mark.parametrize(
    ("language", "expected"),
    [("en", "en"), ("id", "id"), ("de", "en"), (None, "en")],
)
def test_cover_letter_language(language: str | None, expected: str) -> None:
    assert cover_letter_language(language) == expected


def test_cover_letter_prompt_mentions_job_details() -> None:
    job = Job(
        job_id="abc",
        job_title="Backend Engineer",
        employer_name="Acme",
        job_location="Jakarta",
        job_description="Build services",
        job_posting_language="id",
    )

    prompt = build_cover_letter_prompt("My resume", job)

    assert "JOB TITLE: Backend Engineer" in prompt
    assert "EMPLOYER: Acme" in prompt
    assert "in language: id." in prompt
    assert prompt.startswith("RESUME:\nMy resume")
