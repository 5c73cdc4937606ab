from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from common.lenient_json import LenientDecodeError, body_preview, decode_lenient
from common.utils import none_if_blank
from pydantic import BaseModel, Field

from jobfinder.models import Job, JSearchResponse

LOGGER = logging.getLogger("jobfinder.clients")

DEFAULT_JSEARCH_HOST = "jsearch.p.rapidapi.com"
LINKEDIN_HOST = "jobs-api14.p.rapidapi.com"
LINKEDIN_BASE_URL = f"https://{LINKEDIN_HOST}/v2/linkedin"
OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_OPENAI_MODEL = "gpt-5"
EMPTY_COMPLETION_TEXT = "OpenAI returned empty response or unexpected format."


class ApiClientError(RuntimeError):
    pass


async def send_request(
    method: str,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str],
    params: list[tuple[str, str]] | None = None,
    payload: dict[str, Any] | None = None,
) -> httpx.Response:
    request_kwargs: dict[str, Any] = {"headers": headers}
    if params is not None:
        request_kwargs["params"] = params
    if payload is not None:
        request_kwargs["json"] = payload

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method=method, url=url, **request_kwargs)
    except httpx.RequestError as exc:
        raise ApiClientError(f"request failed: {exc}") from exc


class JSearchClient:
    def __init__(self, api_key: str, host: str = DEFAULT_JSEARCH_HOST, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.host = host
        self.timeout = timeout

    def available(self) -> bool:
        return bool(self.api_key)

    def headers(self) -> dict[str, str]:
        return {
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": self.host,
            "Accept": "application/json",
            "User-Agent": "job-finder/0.1",
        }

    async def search(
        self,
        query: str,
        *,
        page: int,
        num_pages: int,
        date_posted: str,
        country: str,
        language: str,
    ) -> JSearchResponse:
        if not self.available():
            raise ApiClientError("RAPIDAPI_KEY is not configured")

        response = await send_request(
            "GET",
            f"https://{self.host}/search",
            timeout=self.timeout,
            headers=self.headers(),
            params=[
                ("query", query),
                ("page", str(page)),
                ("num_pages", str(num_pages)),
                ("date_posted", date_posted),
                ("country", country),
                ("language", language),
            ],
        )
        if response.status_code >= 400:
            raise ApiClientError(f"JSearch returned HTTP {response.status_code}")

        body = response.text
        try:
            return decode_lenient(body, JSearchResponse)
        except LenientDecodeError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "jsearch_decode_failed",
                        "error": str(exc),
                        "body_length": len(body),
                    }
                )
            )
            raise ApiClientError(
                "failed to decode RapidAPI response (possibly trailing data). "
                f"Preview:\n{exc.preview}"
            ) from exc


class LinkedInClient:
    def __init__(self, api_key: str, timeout: float = 20.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def available(self) -> bool:
        return bool(self.api_key)

    def headers(self) -> dict[str, str]:
        return {
            "x-rapidapi-host": LINKEDIN_HOST,
            "x-rapidapi-key": self.api_key,
            "User-Agent": "job-finder/1.0 (+https://example.invalid)",
        }

    async def _get_json(self, path: str, params: list[tuple[str, str]]) -> dict[str, Any]:
        if not self.available():
            raise ApiClientError("RAPIDAPI_KEY is not configured")

        response = await send_request(
            "GET",
            f"{LINKEDIN_BASE_URL}{path}",
            timeout=self.timeout,
            headers=self.headers(),
            params=params,
        )
        text = response.text
        if response.status_code >= 400:
            raise ApiClientError(f"HTTP {response.status_code}: {body_preview(text)}")
        try:
            return decode_lenient(text, dict[str, Any])
        except LenientDecodeError as exc:
            raise ApiClientError(f"invalid JSON: {exc.preview}") from exc

    async def search(
        self,
        query: str,
        *,
        experience_levels: str | None = None,
        workplace_types: str | None = None,
        location: str | None = None,
        date_posted: str | None = None,
        employment_types: str | None = None,
        next_token: str | None = None,
    ) -> dict[str, Any]:
        params = [("query", query.strip())]
        optional = (
            ("experienceLevels", experience_levels),
            ("workplaceTypes", workplace_types),
            ("location", location),
            ("datePosted", date_posted),
            ("employmentTypes", employment_types),
            ("nextToken", next_token),
        )
        for key, value in optional:
            cleaned = none_if_blank(value)
            if cleaned is not None:
                params.append((key, cleaned))
        return await self._get_json("/search", params)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        return await self._get_json("/get", [("id", job_id.strip())])


class ChatMessage(BaseModel):
    role: str
    content: str | None = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    choices: list[ChatChoice] = Field(default_factory=list)


ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert technical recruiter. Compare a candidate resume against a job "
    "description. Output a concise analysis"
)
COVER_LETTER_SYSTEM_PROMPT = (
    "You are an expert career coach and recruiter. Write a concise, tailored, professional "
    "cover letter to Employer. Greeting first to name of Employer / company"
)


def build_analysis_prompt(resume: str, job_description: str) -> str:
    return (
        f"RESUME:\n{resume}\n\nJOB DESCRIPTION:\n{job_description}\n\nTASK:\n"
        "- Provide a match score (0-100%).\n"
        "- Summarize fit in 3-6 sentences.\n"
        "- List 3-6 strengths (bullets).\n"
        "- List 3-6 gaps/risks (bullets) with quick upskilling tips.\n"
        "- Suggest a short tailored headline to use at the top of the resume.\n"
        "Keep it under 2500 characters. Use Markdown."
    )


def cover_letter_language(posting_language: str | None) -> str:
    if posting_language in ("en", "id"):
        return posting_language
    return "en"


def build_cover_letter_prompt(resume: str, job: Job) -> str:
    return (
        f"RESUME:\n{resume}\n\n"
        f"JOB TITLE: {job.job_title or ''}\n"
        f"EMPLOYER: {job.employer_name or ''}\n"
        f"LOCATION: {job.job_location or ''}\n"
        f"JOB DESCRIPTION:\n{job.job_description or ''}\n\nTASK:\n"
        "- Write a one-page cover letter (200-300 words) in language: "
        f"{cover_letter_language(job.job_posting_language)}.\n"
        "- Be specific to the job; highlight 3-4 matching strengths from the resume.\n"
        "- Use a confident but humble tone, avoid cliches, no formatting, plain text.\n"
        "- Start with greetings, a strong opening hook. End with a short call-to-action.\n"
        "- If the candidate name appears in the resume, use it; otherwise omit the name "
        "in the signature."
    )


class OpenAIClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def available(self) -> bool:
        return bool(self.api_key)

    async def complete(self, system: str, user: str) -> str:
        response = await send_request(
            "POST",
            OPENAI_CHAT_URL,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            payload={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            },
        )
        if response.status_code >= 400:
            raise ApiClientError(f"OpenAI returned HTTP {response.status_code}")
        try:
            completion = decode_lenient(response.text, ChatCompletionResponse)
        except LenientDecodeError as exc:
            raise ApiClientError(str(exc)) from exc

        if not completion.choices or completion.choices[0].message.content is None:
            return EMPTY_COMPLETION_TEXT
        return completion.choices[0].message.content

    async def analyze_match(self, resume: str, job_description: str) -> str:
        return await self.complete(
            ANALYSIS_SYSTEM_PROMPT,
            build_analysis_prompt(resume, job_description),
        )

    async def generate_cover_letter(self, resume: str, job: Job) -> str:
        return await self.complete(
            COVER_LETTER_SYSTEM_PROMPT,
            build_cover_letter_prompt(resume, job),
        )
