from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from common.utils import none_if_blank, now_utc_iso

from jobfinder.models import JOB_COLUMNS, JSON_COLUMNS, ApplyOption, Job, Resume

# Columns a re-fetch from the APIs must not reset.
PRESERVED_ON_UPDATE = ("job_id", "created_at", "matching_analysis", "cover_letter", "isdelete")
SEARCH_COLUMNS = ("job_title", "employer_name", "job_location")
LINKEDIN_JOB_PREFIX = "li_"


def _to_db_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _job_from_row(row: sqlite3.Row) -> Job:
    data = dict(row)
    for column in JSON_COLUMNS:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return Job.model_validate(data)


def _search_clause(query: str | None) -> tuple[str, tuple[str, ...]]:
    cleaned = none_if_blank(query)
    if cleaned is None:
        return "", ()
    like = f"%{cleaned}%"
    conditions = " OR ".join(f"{column} LIKE ?" for column in SEARCH_COLUMNS)
    return f"WHERE {conditions}", (like,) * len(SEARCH_COLUMNS)


def _first_text(detail: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = detail.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def job_from_linkedin(detail: dict[str, Any]) -> Job:
    raw_id = detail.get("id")
    linkedin_id = str(raw_id).strip() if raw_id is not None else ""
    if not linkedin_id:
        raise ValueError("LinkedIn job detail is missing an id.")

    company = detail.get("company") if isinstance(detail.get("company"), dict) else {}
    workplace = _first_text(detail, "workplaceType", "workplaceTypes")
    return Job(
        job_id=f"{LINKEDIN_JOB_PREFIX}{linkedin_id}",
        job_publisher="LinkedIn",
        job_title=_first_text(detail, "title", "jobTitle"),
        employer_name=_first_text(detail, "companyName") or _first_text(company, "name"),
        employer_logo=_first_text(detail, "companyLogo") or _first_text(company, "logo"),
        employer_linkedin=_first_text(detail, "companyLink", "companyUrl")
        or _first_text(company, "linkedinUrl", "url"),
        job_location=_first_text(detail, "location"),
        job_description=_first_text(detail, "description", "descriptionText"),
        job_apply_link=_first_text(detail, "applyUrl", "linkedinUrl"),
        job_posted_human_readable=_first_text(detail, "datePosted", "postedTimeAgo"),
        job_employment_type=_first_text(detail, "employmentType", "employmentTypes"),
        job_is_remote=workplace.lower() == "remote" if workplace else None,
        raw_json=detail,
    )


class JobRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    request_id TEXT,
                    search_query TEXT,
                    employer_name TEXT,
                    employer_logo TEXT,
                    employer_website TEXT,
                    employer_company_type TEXT,
                    employer_linkedin TEXT,
                    job_publisher TEXT,
                    job_employment_type TEXT,
                    job_employment_type_text TEXT,
                    job_title TEXT,
                    job_apply_link TEXT,
                    job_posted_human_readable TEXT,
                    job_location TEXT,
                    job_city TEXT,
                    job_state TEXT,
                    job_country TEXT,
                    job_google_link TEXT,
                    job_salary_currency TEXT,
                    job_salary_period TEXT,
                    job_job_title TEXT,
                    job_posting_language TEXT,
                    job_onet_soc TEXT,
                    job_onet_job_zone TEXT,
                    job_employment_types_json TEXT,
                    job_benefits_json TEXT,
                    job_salary_json TEXT,
                    job_highlights_json TEXT,
                    raw_json TEXT,
                    job_apply_is_direct INTEGER,
                    job_apply_quality_score REAL,
                    job_is_remote INTEGER,
                    job_posted_at_timestamp INTEGER,
                    job_latitude REAL,
                    job_longitude REAL,
                    no_experience_required INTEGER,
                    required_experience_in_months INTEGER,
                    experience_mentioned INTEGER,
                    experience_preferred INTEGER,
                    job_min_salary REAL,
                    job_max_salary REAL,
                    matching_analysis TEXT NOT NULL DEFAULT '',
                    job_description TEXT,
                    cover_letter TEXT,
                    job_offer_expiration_timestamp INTEGER,
                    job_posted_at_datetime_utc TEXT,
                    job_offer_expiration_datetime_utc TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    isdelete INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_updated_at
                    ON jobs (updated_at, job_posted_at_timestamp);

                CREATE TABLE IF NOT EXISTS job_apply_options (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    publisher TEXT,
                    apply_link TEXT,
                    is_direct INTEGER,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS resumes (
                    id INTEGER PRIMARY KEY,
                    description TEXT NOT NULL
                );
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def upsert_job(self, job: Job, *, search_query: str | None = None) -> None:
        if search_query is not None:
            job = job.model_copy(update={"search_query": search_query})
        now = now_utc_iso()
        values = [_to_db_value(column, getattr(job, column)) for column in JOB_COLUMNS]
        values[JOB_COLUMNS.index("created_at")] = now
        values[JOB_COLUMNS.index("updated_at")] = now
        placeholders = ", ".join("?" for _ in JOB_COLUMNS)
        assignments = ",\n".join(
            f"{column} = excluded.{column}"
            for column in JOB_COLUMNS
            if column not in PRESERVED_ON_UPDATE
        )
        with self._lock:
            self.connection.execute(
                f"""
                INSERT INTO jobs ({", ".join(JOB_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT(job_id) DO UPDATE SET
                {assignments}
                """,
                values,
            )
            self.connection.commit()

    def upsert_job_from_linkedin(self, detail: dict[str, Any]) -> Job:
        job = job_from_linkedin(detail)
        self.upsert_job(job)
        return job

    def find_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM jobs WHERE job_id = ? LIMIT 1",
                (job_id,),
            ).fetchone()
        return _job_from_row(row) if row is not None else None

    def count_jobs(self, query: str | None = None) -> int:
        where, params = _search_clause(query)
        with self._lock:
            row = self.connection.execute(
                f"SELECT COUNT(1) AS c FROM jobs {where}",
                params,
            ).fetchone()
        return int(row["c"])

    def list_jobs_paged(self, query: str | None, page: int, per_page: int) -> list[Job]:
        where, params = _search_clause(query)
        offset = (max(page, 1) - 1) * per_page
        with self._lock:
            rows = self.connection.execute(
                f"""
                SELECT * FROM jobs
                {where}
                ORDER BY updated_at DESC, job_posted_at_timestamp DESC
                LIMIT ? OFFSET ?
                """,
                (*params, per_page, offset),
            ).fetchall()
        return [_job_from_row(row) for row in rows]

    def update_matching_analysis(self, job_id: str, analysis: str) -> None:
        with self._lock:
            self.connection.execute(
                "UPDATE jobs SET matching_analysis = ?, updated_at = ? WHERE job_id = ?",
                (analysis, now_utc_iso(), job_id),
            )
            self.connection.commit()

    def update_cover_letter(self, job_id: str, cover_letter: str) -> None:
        with self._lock:
            self.connection.execute(
                "UPDATE jobs SET cover_letter = ?, updated_at = ? WHERE job_id = ?",
                (cover_letter, now_utc_iso(), job_id),
            )
            self.connection.commit()

    def insert_apply_option_if_new(
        self,
        job_id: str,
        publisher: str | None,
        apply_link: str | None,
        is_direct: bool | None,
    ) -> bool:
        with self._lock:
            existing = self.connection.execute(
                """
                SELECT 1 FROM job_apply_options
                WHERE job_id = ? AND publisher IS ? AND apply_link IS ?
                LIMIT 1
                """,
                (job_id, publisher, apply_link),
            ).fetchone()
            if existing is not None:
                return False
            self.connection.execute(
                """
                INSERT INTO job_apply_options (job_id, publisher, apply_link, is_direct, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    publisher,
                    apply_link,
                    None if is_direct is None else int(is_direct),
                    now_utc_iso(),
                ),
            )
            self.connection.commit()
            return True

    def get_apply_options(self, job_id: str) -> list[ApplyOption]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT id, job_id, publisher, apply_link, is_direct, created_at
                FROM job_apply_options
                WHERE job_id = ?
                ORDER BY id ASC
                """,
                (job_id,),
            ).fetchall()
        return [ApplyOption(**dict(row)) for row in rows]

    def get_resume(self, resume_id: int) -> Resume | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT id, description FROM resumes WHERE id = ? LIMIT 1",
                (resume_id,),
            ).fetchone()
        return Resume(**dict(row)) if row is not None else None

    def upsert_resume(self, resume_id: int, description: str) -> None:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO resumes (id, description)
                VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET description = excluded.description
                """,
                (resume_id, description),
            )
            self.connection.commit()
