from __future__ import annotations

from html import escape
from urllib.parse import quote, urlencode

from jobfinder.models import ApplyOption, Job, JobRow, PageLink

COUNTRIES: tuple[tuple[str, str], ...] = (
    ("ID", "Indonesia"),
    ("US", "United States"),
    ("CA", "Canada"),
    ("GB", "United Kingdom"),
    ("DE", "Germany"),
    ("FR", "France"),
    ("NL", "Netherlands"),
    ("CH", "Switzerland"),
    ("SE", "Sweden"),
    ("NO", "Norway"),
    ("DK", "Denmark"),
    ("FI", "Finland"),
    ("AT", "Austria"),
    ("BE", "Belgium"),
    ("IE", "Ireland"),
    ("LU", "Luxembourg"),
    ("IS", "Iceland"),
    ("AU", "Australia"),
    ("NZ", "New Zealand"),
    ("SG", "Singapore"),
    ("JP", "Japan"),
    ("KR", "South Korea"),
    ("TW", "Taiwan"),
    ("HK", "Hong Kong"),
    ("AE", "United Arab Emirates"),
    ("QA", "Qatar"),
    ("KW", "Kuwait"),
    ("BH", "Bahrain"),
    ("SA", "Saudi Arabia"),
    ("OM", "Oman"),
    ("IL", "Israel"),
)
LANGUAGES = ("en", "id", "de", "fr", "nl", "ja", "ko")
JSEARCH_DATE_POSTED = ("all", "today", "3days", "week", "month")
DEFAULT_COUNTRY = "ID"
DEFAULT_LANGUAGE = "en"
DEFAULT_DATE_POSTED = "all"
LINKEDIN_DATE_POSTED = ("any", "day", "week", "month")
DEFAULT_LINKEDIN_DATE_POSTED = "month"

STYLE = """
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; max-width: 1100px; }
      h2 { margin-top: 1.5rem; }
      .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 1rem; }
      .panel { border: 1px solid #ddd; border-radius: 8px; padding: 1rem; }
      textarea, input, select { width: 100%; margin: 0.35rem 0; padding: 0.55rem; }
      button { padding: 0.55rem 0.9rem; cursor: pointer; margin-top: 0.4rem; }
      table { width: 100%; border-collapse: collapse; }
      td, th { border-bottom: 1px solid #eee; padding: 0.5rem; text-align: left; vertical-align: top; }
      pre { background: #f7f7f7; padding: 1rem; white-space: pre-wrap; }
      .notice { background: #eef6ff; padding: 0.6rem 1rem; border-radius: 6px; }
      .pages a, .pages strong { margin-right: 0.5rem; }
      @media (max-width: 900px) { .grid { grid-template-columns: 1fr; } }
    </style>"""


def layout(title: str, body: str) -> str:
    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{escape(title)}</title>{STYLE}
  </head>
  <body>
    <nav><a href="/">Search</a> | <a href="/list">Jobs</a> | <a href="/resume">Resume</a></nav>
{body}
  </body>
</html>
"""


def _options(values: list[tuple[str, str]], selected: str) -> str:
    return "\n".join(
        f'<option value="{escape(value)}"{" selected" if value == selected else ""}>'
        f"{escape(label)}</option>"
        for value, label in values
    )


def render_index() -> str:
    countries = _options([(code, name) for code, name in COUNTRIES], DEFAULT_COUNTRY)
    languages = _options([(code, code) for code in LANGUAGES], DEFAULT_LANGUAGE)
    date_posted = _options([(value, value) for value in JSEARCH_DATE_POSTED], DEFAULT_DATE_POSTED)
    linkedin_date_posted = _options(
        [(value, value) for value in LINKEDIN_DATE_POSTED],
        DEFAULT_LINKEDIN_DATE_POSTED,
    )
    body = f"""
    <h1>Job Finder</h1>
    <p>Search listings, analyse the match against your resume, and draft a cover letter.</p>
    <div class="grid">
      <form class="panel" method="post" action="/fetch">
        <h2>JSearch</h2>
        <label>Query</label>
        <input name="query" placeholder="remote rust developer" required />
        <label>Country</label>
        <select name="country">{countries}</select>
        <label>Language</label>
        <select name="language">{languages}</select>
        <label>Date posted</label>
        <select name="date_posted">{date_posted}</select>
        <label>Page</label>
        <input name="page" type="number" min="1" value="1" />
        <label>Pages to fetch</label>
        <input name="num_pages" type="number" min="1" value="1" />
        <button type="submit">Fetch</button>
      </form>
      <form class="panel" method="post" action="/fetch_li">
        <h2>LinkedIn</h2>
        <label>Query</label>
        <input name="query" placeholder="kotlin" />
        <label>Experience levels (semicolon-separated)</label>
        <input name="experience_levels" placeholder="entry;associate;midSenior" />
        <label>Workplace types</label>
        <input name="workplace_types" placeholder="remote;hybrid" />
        <label>Employment types</label>
        <input name="employment_types" placeholder="fulltime;contractor" />
        <label>Location</label>
        <input name="location" placeholder="Worldwide" />
        <label>Date posted</label>
        <select name="date_posted">{linkedin_date_posted}</select>
        <label>Next token</label>
        <input name="next_token" />
        <button type="submit">Fetch</button>
      </form>
    </div>"""
    return layout("Job Finder", body)


def _list_url(query: str, page: int) -> str:
    return "/list?" + urlencode({"q": query, "page": page})


def render_jobs(
    *,
    query: str,
    rows: list[JobRow],
    current_page: int,
    per_page: int,
    total_jobs: int,
    total_pages: int,
    pages: list[PageLink],
    notice: str | None = None,
    next_token: str | None = None,
) -> str:
    table_rows = "\n".join(
        f"""        <tr>
          <td><a href="/view/{escape(quote(row.job.job_id, safe=''))}">{escape(row.job.job_title or row.job.job_id)}</a></td>
          <td>{escape(row.job.employer_name or "")}</td>
          <td>{escape(row.job.job_location or "")}</td>
          <td>{escape(row.preview) if row.has_analysis else "<em>not analysed</em>"}</td>
        </tr>"""
        for row in rows
    )
    page_links = " ".join(
        f"<strong>{link.n}</strong>"
        if link.is_current
        else f'<a href="{escape(_list_url(query, link.n))}">{link.n}</a>'
        for link in pages
    )
    notice_html = f'<p class="notice">{escape(notice)}</p>' if notice else ""
    next_html = ""
    if next_token:
        next_html = f"""
    <form method="post" action="/fetch_li">
      <input type="hidden" name="query" value="{escape(query)}" />
      <input type="hidden" name="next_token" value="{escape(next_token)}" />
      <button type="submit">Fetch next LinkedIn page</button>
    </form>"""
    first_index = (current_page - 1) * per_page + 1 if total_jobs else 0
    last_index = min(current_page * per_page, total_jobs)
    body = f"""
    <h1>Jobs</h1>
    {notice_html}
    <form method="get" action="/list">
      <input name="q" value="{escape(query)}" placeholder="title, company or location" />
      <button type="submit">Filter</button>
    </form>
    <p>Showing {first_index}-{last_index} of {total_jobs} jobs (page {current_page} of {total_pages})</p>
    <table>
      <thead><tr><th>Title</th><th>Company</th><th>Location</th><th>Analysis</th></tr></thead>
      <tbody>
{table_rows}
      </tbody>
    </table>
    <p class="pages">{page_links}</p>{next_html}"""
    return layout("Jobs", body)


def render_job(job: Job, apply_options: list[ApplyOption]) -> str:
    options_html = "\n".join(
        f'<li><a href="{escape(option.apply_link or "#")}" rel="noopener" target="_blank">'
        f'{escape(option.publisher or "Apply")}</a>{" (direct)" if option.is_direct else ""}</li>'
        for option in apply_options
    )
    apply_link = ""
    if job.job_apply_link:
        apply_link = f'<p><a href="{escape(job.job_apply_link)}" target="_blank">Apply</a></p>'
    analysis = escape(job.matching_analysis) if job.matching_analysis else "<em>No analysis yet.</em>"
    cover_letter = escape(job.cover_letter) if job.cover_letter else "<em>No cover letter yet.</em>"
    job_id = escape(job.job_id)
    body = f"""
    <h1>{escape(job.job_title or job.job_id)}</h1>
    <p>{escape(job.employer_name or "")} &middot; {escape(job.job_location or "")}
      &middot; {escape(job.job_publisher or "")} &middot; {escape(job.job_posted_human_readable or "")}</p>
    {apply_link}
    <h2>Apply options</h2>
    <ul>{options_html or "<li>None recorded.</li>"}</ul>
    <h2>Description</h2>
    <pre>{escape(job.job_description or "")}</pre>
    <div class="grid">
      <div class="panel">
        <h2>Match analysis</h2>
        <form method="post" action="/analyze">
          <input type="hidden" name="job_id" value="{job_id}" />
          <input type="hidden" name="resume_id" value="1" />
          <button type="submit">Analyse match</button>
        </form>
        <pre>{analysis}</pre>
      </div>
      <div class="panel">
        <h2>Cover letter</h2>
        <form method="post" action="/cover_generate">
          <input type="hidden" name="job_id" value="{job_id}" />
          <input type="hidden" name="resume_id" value="1" />
          <button type="submit">Generate cover letter</button>
        </form>
        <pre>{cover_letter}</pre>
      </div>
    </div>"""
    return layout(job.job_title or "Job", body)


def render_resume(resume_id: int, description: str | None) -> str:
    status = "" if description is not None else "<p><em>No resume saved yet.</em></p>"
    body = f"""
    <h1>Resume #{resume_id}</h1>
    {status}
    <form method="post" action="/resume_save">
      <input type="hidden" name="id" value="{resume_id}" />
      <textarea name="description" rows="20">{escape(description or "")}</textarea>
      <button type="submit">Save</button>
    </form>"""
    return layout("Resume", body)
