from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


class ApplyOptionIn(BaseModel):
    publisher: str | None = None
    apply_link: str | None = None
    is_direct: bool | None = None


class Job(BaseModel):
    job_id: str
    request_id: str | None = None
    search_query: str | None = None
    employer_name: str | None = None
    employer_logo: str | None = None
    employer_website: str | None = None
    employer_company_type: str | None = None
    employer_linkedin: str | None = None
    job_publisher: str | None = None
    job_employment_type: str | None = None
    job_employment_type_text: str | None = None
    job_title: str | None = None
    job_apply_link: str | None = None
    job_posted_human_readable: str | None = None
    job_location: str | None = None
    job_city: str | None = None
    job_state: str | None = None
    job_country: str | None = None
    job_google_link: str | None = None
    job_salary_currency: str | None = None
    job_salary_period: str | None = None
    job_job_title: str | None = None
    job_posting_language: str | None = None
    job_onet_soc: str | None = None
    job_onet_job_zone: str | None = None

    # JSearch sends these without the _json suffix.
    job_employment_types_json: Any = Field(
        default=None,
        validation_alias=AliasChoices("job_employment_types_json", "job_employment_types"),
    )
    job_benefits_json: Any = Field(
        default=None,
        validation_alias=AliasChoices("job_benefits_json", "job_benefits"),
    )
    job_salary_json: Any = Field(
        default=None,
        validation_alias=AliasChoices("job_salary_json", "job_salary"),
    )
    job_highlights_json: Any = Field(
        default=None,
        validation_alias=AliasChoices("job_highlights_json", "job_highlights"),
    )
    raw_json: Any = None

    job_apply_is_direct: bool | None = None
    job_apply_quality_score: Decimal | None = None
    job_is_remote: bool | None = None
    job_posted_at_timestamp: int | None = None
    job_latitude: Decimal | None = None
    job_longitude: Decimal | None = None
    no_experience_required: bool | None = None
    required_experience_in_months: int | None = None
    experience_mentioned: bool | None = None
    experience_preferred: bool | None = None
    job_min_salary: Decimal | None = None
    job_max_salary: Decimal | None = None

    matching_analysis: str = ""
    job_description: str | None = None
    cover_letter: str | None = None

    job_offer_expiration_timestamp: int | None = None
    job_posted_at_datetime_utc: datetime | None = None
    job_offer_expiration_datetime_utc: datetime | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    isdelete: int = 0

    # Sent by JSearch alongside each job; stored in job_apply_options.
    apply_options: list[ApplyOptionIn] = Field(default_factory=list, exclude=True)


JSON_COLUMNS = (
    "job_employment_types_json",
    "job_benefits_json",
    "job_salary_json",
    "job_highlights_json",
    "raw_json",
)
JOB_COLUMNS = tuple(name for name in Job.model_fields if name != "apply_options")


class JSearchResponse(BaseModel):
    status: str | None = None
    request_id: str | None = None
    data: list[Job] = Field(default_factory=list)


class ApplyOption(BaseModel):
    id: int
    job_id: str
    publisher: str | None = None
    apply_link: str | None = None
    is_direct: bool | None = None
    created_at: str


class Resume(BaseModel):
    id: int
    description: str


class PageLink(BaseModel):
    n: int
    is_current: bool


class JobRow(BaseModel):
    job: Job
    preview: str
    has_analysis: bool
