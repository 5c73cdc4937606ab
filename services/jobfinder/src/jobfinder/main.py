from __future__ import annotations

import json
import logging
import math
import os
import sqlite3
import tempfile
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import quote, urlencode

from common.utils import clean_semicolon_list, none_if_blank, now_utc_iso, word_preview
from fastapi import FastAPI, Form, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel

from jobfinder.clients import (
    DEFAULT_JSEARCH_HOST,
    DEFAULT_OPENAI_MODEL,
    ApiClientError,
    JSearchClient,
    LinkedInClient,
    OpenAIClient,
)
from jobfinder.models import JobRow, PageLink
from jobfinder.pages import (
    DEFAULT_COUNTRY,
    DEFAULT_DATE_POSTED,
    DEFAULT_LANGUAGE,
    DEFAULT_LINKEDIN_DATE_POSTED,
    LINKEDIN_DATE_POSTED,
    render_index,
    render_job,
    render_jobs,
    render_resume,
)
from jobfinder.repository import LINKEDIN_JOB_PREFIX, JobRepository

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobfinder", "jobfinder.sqlite3")
PER_PAGE = 50
PAGE_WINDOW = 3
DEFAULT_RESUME_ID = 1
DEFAULT_LINKEDIN_QUERY = "kotlin"
DEFAULT_LINKEDIN_LOCATION = "Worldwide"

ALLOWED_EXPERIENCE = (
    "intern",
    "entry",
    "associate",
    "midSenior",
    "director",
    "executive",
    "notApplicable",
)
ALLOWED_WORKPLACE = ("remote", "hybrid", "onSite")
ALLOWED_EMPLOYMENT = ("contractor", "fulltime", "parttime", "intern", "temporary")

LOGGER = logging.getLogger("jobfinder.web")


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {path}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {"count": 0, "2xx": 0, "3xx": 0, "4xx": 0, "5xx": 0, "latency_ms_avg": 0.0},
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in endpoint:
                endpoint[bucket] = int(endpoint[bucket]) + 1
            previous_avg = float(endpoint["latency_ms_avg"])
            endpoint["latency_ms_avg"] = (
                previous_avg + (duration_ms - previous_avg) / int(endpoint["count"])
            )

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
            )


def parse_positive_int(value: str | None, default: int = 1) -> int:
    try:
        parsed = int((value or "").strip())
    except ValueError:
        return default
    return max(parsed, 1)


def parse_int(value: str | None, default: int) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        return default


def page_window(current_page: int, total_pages: int) -> list[PageLink]:
    start = max(current_page - PAGE_WINDOW, 1)
    end = min(current_page + PAGE_WINDOW, total_pages)
    return [PageLink(n=n, is_current=n == current_page) for n in range(start, end + 1)]


def unwrap_data(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def linkedin_next_token(payload: dict[str, Any]) -> str | None:
    meta = payload.get("meta")
    if isinstance(meta, dict) and isinstance(meta.get("nextToken"), str):
        return meta["nextToken"]
    token = payload.get("nextToken")
    return token if isinstance(token, str) else None


def redirect(url: str, status_code: int = 303) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status_code)


def log_event(
    event: str,
    level: int = logging.INFO,
    exc_info: BaseException | None = None,
    **fields: Any,
) -> None:
    LOGGER.log(level, json.dumps({"event": event, **fields}, default=str), exc_info=exc_info)


def create_app(
    *,
    database_path: str | None = None,
    rapidapi_key: str | None = None,
    jsearch_host: str | None = None,
    openai_api_key: str | None = None,
    openai_model: str | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("JOBFINDER_DB_PATH", DEFAULT_DB_PATH)
    resolved_rapidapi_key = (
        rapidapi_key if rapidapi_key is not None else os.getenv("RAPIDAPI_KEY", "")
    ).strip()
    resolved_openai_key = (
        openai_api_key if openai_api_key is not None else os.getenv("OPENAI_API_KEY", "")
    ).strip()

    repository = JobRepository(database_path=resolved_path)
    jsearch = JSearchClient(
        resolved_rapidapi_key,
        host=jsearch_host or os.getenv("JSEARCH_HOST", DEFAULT_JSEARCH_HOST),
    )
    linkedin = LinkedInClient(resolved_rapidapi_key)
    openai = OpenAIClient(
        resolved_openai_key,
        model=openai_model or os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.jsearch = jsearch
        app.state.linkedin = linkedin
        app.state.openai = openai
        app.state.metrics = MetricsStore()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="JobFinder", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        failure: Exception | None = None
        try:
            response = await call_next(request)
        except Exception as exc:
            failure = exc
            response = JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 3),
        }
        if failure is None:
            log_event("request_complete", **fields)
        else:
            log_event(
                "request_failed",
                logging.ERROR,
                exc_info=failure,
                error=str(failure),
                **fields,
            )
        return response

    async def load_resume_text(request: Request, resume_id: int) -> str:
        try:
            resume = await run_in_threadpool(request.app.state.repository.get_resume, resume_id)
        except sqlite3.Error as exc:
            log_event("resume_load_failed", logging.WARNING, resume_id=resume_id, error=str(exc))
            return ""
        return resume.description if resume else ""

    async def save_linkedin_detail(
        request: Request,
        detail: dict[str, Any],
        linkedin_id: str,
    ) -> bool:
        repo: JobRepository = request.app.state.repository
        detail_obj = dict(unwrap_data(detail))
        detail_obj.setdefault("id", linkedin_id)
        try:
            job = await run_in_threadpool(repo.upsert_job_from_linkedin, detail_obj)
        except (sqlite3.Error, ValueError) as exc:
            log_event(
                "linkedin_upsert_failed",
                logging.WARNING,
                linkedin_id=linkedin_id,
                error=str(exc),
            )
            return False

        link = detail_obj.get("linkedinUrl")
        try:
            await run_in_threadpool(
                repo.insert_apply_option_if_new,
                job.job_id,
                "LinkedIn",
                link if isinstance(link, str) else None,
                None,
            )
        except sqlite3.Error as exc:
            log_event(
                "apply_option_insert_failed",
                logging.WARNING,
                job_id=job.job_id,
                error=str(exc),
            )
        return True

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobfinder"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return render_index()

    @app.post("/fetch")
    async def fetch_jsearch(
        request: Request,
        query: str = Form(default=""),
        country: str = Form(default=DEFAULT_COUNTRY),
        language: str = Form(default=DEFAULT_LANGUAGE),
        date_posted: str = Form(default=DEFAULT_DATE_POSTED),
        page: str = Form(default="1"),
        num_pages: str = Form(default="1"),
    ):
        client: JSearchClient = request.app.state.jsearch
        try:
            results = await client.search(
                query,
                page=parse_positive_int(page),
                num_pages=parse_positive_int(num_pages),
                date_posted=date_posted,
                country=country,
                language=language,
            )
        except ApiClientError as exc:
            return PlainTextResponse(f"API error: {exc}", status_code=502)

        repo: JobRepository = request.app.state.repository
        try:
            for job in results.data:
                await run_in_threadpool(repo.upsert_job, job, search_query=query)
                for option in job.apply_options:
                    await run_in_threadpool(
                        repo.insert_apply_option_if_new,
                        job.job_id,
                        option.publisher,
                        option.apply_link,
                        option.is_direct,
                    )
        except sqlite3.Error as exc:
            return PlainTextResponse(
                f"DB error while saving results: {exc}",
                status_code=500,
            )

        log_event("jsearch_fetched", query=query, jobs=len(results.data))
        return redirect("/list?" + urlencode({"q": query}))

    @app.post("/fetch_li")
    async def fetch_linkedin(
        request: Request,
        query: str = Form(default=DEFAULT_LINKEDIN_QUERY),
        experience_levels: str | None = Form(default=None),
        workplace_types: str | None = Form(default=None),
        employment_types: str | None = Form(default=None),
        location: str | None = Form(default=None),
        date_posted: str | None = Form(default=None),
        next_token: str | None = Form(default=None),
    ):
        client: LinkedInClient = request.app.state.linkedin
        resolved_query = none_if_blank(query) or DEFAULT_LINKEDIN_QUERY
        resolved_date_posted = none_if_blank(date_posted) or DEFAULT_LINKEDIN_DATE_POSTED
        if resolved_date_posted not in LINKEDIN_DATE_POSTED:
            resolved_date_posted = DEFAULT_LINKEDIN_DATE_POSTED

        try:
            search_json = await client.search(
                resolved_query,
                experience_levels=clean_semicolon_list(experience_levels, ALLOWED_EXPERIENCE),
                workplace_types=clean_semicolon_list(workplace_types, ALLOWED_WORKPLACE),
                location=none_if_blank(location) or DEFAULT_LINKEDIN_LOCATION,
                date_posted=resolved_date_posted,
                employment_types=clean_semicolon_list(employment_types, ALLOWED_EMPLOYMENT),
                next_token=none_if_blank(next_token),
            )
        except ApiClientError as exc:
            return PlainTextResponse(f"LinkedIn Search error: {exc}", status_code=502)

        items = search_json.get("data")
        saved = 0
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            linkedin_id = str(item.get("id") or "").strip()
            if not linkedin_id:
                continue
            try:
                detail = await client.get_job(linkedin_id)
            except ApiClientError as exc:
                log_event(
                    "linkedin_get_job_failed",
                    logging.WARNING,
                    linkedin_id=linkedin_id,
                    error=str(exc),
                )
                detail = {"data": item}
            if await save_linkedin_detail(request, detail, linkedin_id):
                saved += 1

        new_token = linkedin_next_token(search_json)
        notice = f"LinkedIn fetched: {saved} items"
        params = [("q", resolved_query)]
        if new_token:
            notice += " (has next page)"
            params.append(("next_token", new_token))
        params.append(("notice", notice))
        log_event("linkedin_fetched", query=resolved_query, saved=saved)
        return redirect("/list?" + urlencode(params))

    @app.get("/list", response_class=HTMLResponse)
    async def list_jobs(
        request: Request,
        q: str | None = Query(default=None),
        page: str | None = Query(default=None),
        notice: str | None = Query(default=None),
        next_token: str | None = Query(default=None),
    ):
        repo: JobRepository = request.app.state.repository
        query = none_if_blank(q)
        requested_page = parse_positive_int(page)
        try:
            total_jobs = await run_in_threadpool(repo.count_jobs, query)
            total_pages = max(math.ceil(total_jobs / PER_PAGE), 1)
            current_page = min(requested_page, total_pages)
            jobs = await run_in_threadpool(repo.list_jobs_paged, query, current_page, PER_PAGE)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)

        rows = [
            JobRow(
                job=job,
                preview=word_preview(job.matching_analysis),
                has_analysis=bool(job.matching_analysis),
            )
            for job in jobs
        ]
        return render_jobs(
            query=query or "",
            rows=rows,
            current_page=current_page,
            per_page=PER_PAGE,
            total_jobs=total_jobs,
            total_pages=total_pages,
            pages=page_window(current_page, total_pages),
            notice=none_if_blank(notice),
            next_token=none_if_blank(next_token),
        )

    @app.get("/view/{job_id}", response_class=HTMLResponse)
    async def view_job(job_id: str, request: Request):
        repo: JobRepository = request.app.state.repository
        client: LinkedInClient = request.app.state.linkedin
        try:
            job = await run_in_threadpool(repo.find_job, job_id)
            if (
                job is not None
                and job.job_id.startswith(LINKEDIN_JOB_PREFIX)
                and none_if_blank(job.job_description) is None
            ):
                linkedin_id = job.job_id.removeprefix(LINKEDIN_JOB_PREFIX)
                try:
                    detail = await client.get_job(linkedin_id)
                except ApiClientError as exc:
                    log_event(
                        "linkedin_get_job_failed",
                        logging.WARNING,
                        linkedin_id=linkedin_id,
                        error=str(exc),
                    )
                else:
                    if await save_linkedin_detail(request, detail, linkedin_id):
                        job = await run_in_threadpool(repo.find_job, job_id)

            if job is None:
                return PlainTextResponse("Job not found", status_code=404)
            apply_options = await run_in_threadpool(repo.get_apply_options, job_id)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)
        return render_job(job, apply_options)

    @app.post("/analyze")
    async def analyze(
        request: Request,
        job_id: str = Form(default=""),
        resume_id: str = Form(default=str(DEFAULT_RESUME_ID)),
    ):
        repo: JobRepository = request.app.state.repository
        client: OpenAIClient = request.app.state.openai
        try:
            job = await run_in_threadpool(repo.find_job, job_id)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)
        if job is None:
            return PlainTextResponse("Job not found", status_code=404)

        resume_text = await load_resume_text(request, parse_int(resume_id, DEFAULT_RESUME_ID))
        if client.available():
            try:
                analysis = await client.analyze_match(resume_text, job.job_description or "")
            except ApiClientError as exc:
                analysis = f"OpenAI error: {exc}"
        else:
            analysis = "OpenAI API key not configured; skipping analysis."

        try:
            await run_in_threadpool(repo.update_matching_analysis, job_id, analysis)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"Failed to save analysis: {exc}", status_code=500)
        return redirect(f"/view/{quote(job_id, safe='')}", status_code=302)

    @app.post("/cover_generate")
    async def generate_cover_letter(
        request: Request,
        job_id: str = Form(default=""),
        resume_id: str = Form(default=str(DEFAULT_RESUME_ID)),
    ):
        repo: JobRepository = request.app.state.repository
        client: OpenAIClient = request.app.state.openai
        try:
            job = await run_in_threadpool(repo.find_job, job_id)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)
        if job is None:
            return PlainTextResponse("Job not found", status_code=404)

        resume_text = await load_resume_text(request, parse_int(resume_id, DEFAULT_RESUME_ID))
        if client.available():
            try:
                cover_letter = await client.generate_cover_letter(resume_text, job)
            except ApiClientError as exc:
                cover_letter = f"OpenAI error: {exc}"
        else:
            cover_letter = "OpenAI API key not configured; skipping cover letter."

        try:
            await run_in_threadpool(repo.update_cover_letter, job_id, cover_letter)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"Failed to save cover letter: {exc}", status_code=500)
        return redirect(f"/view/{quote(job_id, safe='')}", status_code=302)

    @app.get("/resume", response_class=HTMLResponse)
    async def resume_page(request: Request, id: str | None = Query(default=None)):
        resume_id = parse_int(id, DEFAULT_RESUME_ID)
        try:
            resume = await run_in_threadpool(request.app.state.repository.get_resume, resume_id)
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)
        if resume is None:
            return render_resume(resume_id, None)
        return render_resume(resume.id, resume.description)

    @app.post("/resume_save")
    async def resume_save(
        request: Request,
        id: str = Form(default=str(DEFAULT_RESUME_ID)),
        description: str = Form(default=""),
    ):
        resume_id = parse_int(id, DEFAULT_RESUME_ID)
        try:
            await run_in_threadpool(
                request.app.state.repository.upsert_resume,
                resume_id,
                description,
            )
        except sqlite3.Error as exc:
            return PlainTextResponse(f"DB error: {exc}", status_code=500)
        return redirect(f"/resume?id={resume_id}", status_code=302)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("JOBFINDER_HOST", "127.0.0.1"),
        port=int(os.getenv("JOBFINDER_PORT", "8000")),
    )
