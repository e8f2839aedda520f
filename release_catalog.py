#!/usr/bin/env python3
"""Static catalog of a GitHub account's repositories with AI tags and release narratives."""

import argparse
import html
import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

import psycopg
import requests
from bs4 import BeautifulSoup
from openai import OpenAI

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

GITHUB_API_URL = "https://api.github.com"
GITHUB_REPOS_URL_TEMPLATE = GITHUB_API_URL + "/users/{owner}/repos"
GITHUB_RELEASES_URL_TEMPLATE = GITHUB_API_URL + "/repos/{owner}/{name}/releases"
GITHUB_DOWNLOAD_URL_TEMPLATE = "https://github.com/{owner}/{name}/archive/refs/tags/{tag}.zip"
GITHUB_PROFILE_URL_TEMPLATE = "https://github.com/{owner}"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_PAGE_SIZE = 100

TAG_VOCABULARY = ("wordpress", "browser-extension", "web-app", "library", "utility")
DEFAULT_TAG = "utility"
TAG_LABELS = {
    "wordpress": "WordPress",
    "browser-extension": "Browser extension",
    "web-app": "Web app",
    "library": "Library",
    "utility": "Utility",
}

METADATA_KEY_PREFIX = "repo-metadata"
POST_KEY_PREFIX = "release-post"
RUN_LOCK_KEY = 518_204_771
UNSAFE_FRAGMENT_TAGS = [
    "script",
    "style",
    "iframe",
    "frame",
    "object",
    "embed",
    "meta",
    "base",
    "link",
    "form",
    "svg",
    "math",
]
UNSAFE_URL_SCHEMES = ("javascript:", "vbscript:", "data:")

FENCE_OPEN_RE = re.compile(r"^```[\w+-]*[ \t]*\n")
FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```$")
FENCE_INLINE_LANG_RE = re.compile(r"^[\w+-]+\s+(?=<)")
SLUG_INVALID_RE = re.compile(r"[^a-z0-9._-]+")

GITHUB_USERNAME = os.getenv("GITHUB_USERNAME", "guilamu")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")
AI_MODEL = os.getenv("AI_MODEL", "gpt-5-mini")
CACHE_FILE = Path(os.getenv("CACHE_FILE", ".cache/catalog_cache.json"))
CACHE_DATABASE_URL = os.getenv("CACHE_DATABASE_URL", "")
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "docs"))
SITE_TITLE = os.getenv("SITE_TITLE", "Extensions & Plugins")

_openai_client = None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Generate the static repository catalog site.")
    parser.add_argument("--user", default=GITHUB_USERNAME, help="GitHub account whose repositories are listed.")
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR, help="Directory the site is written to.")
    parser.add_argument("--cache-file", type=Path, default=CACHE_FILE, help="JSON file holding generated content.")
    parser.add_argument(
        "--cache-only",
        action="store_true",
        help="Build from cached AI content only; never call the generative service.",
    )
    return parser.parse_args(argv)


def get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logging.warning("Invalid integer for %s=%s, using default=%d", name, value, default)
        return default


RELEASE_BODY_CHAR_LIMIT = get_int_env("RELEASE_BODY_CHAR_LIMIT", 6000)


def normalize_text(value: str) -> str:
    """Normalize whitespace in text."""
    if not value:
        return ""
    return " ".join(value.split())


def parse_timestamp(value: str) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_date_display(value: str) -> str:
    """Format a GitHub timestamp for page text."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return ""
    return parsed.strftime("%B %d, %Y")


def metadata_cache_key(repo_id) -> str:
    return f"{METADATA_KEY_PREFIX}:{repo_id}"


def post_cache_key(release_id) -> str:
    return f"{POST_KEY_PREFIX}:{release_id}"


def load_cache(path: Path) -> dict:
    """Load the cache file; a missing or corrupt file is an empty cache."""
    if not path.exists():
        logging.info("No cache file at %s; starting with an empty cache", path)
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logging.warning("Ignoring unreadable cache file %s: %s", path, exc)
        return {}
    if not isinstance(payload, dict):
        logging.warning("Ignoring cache file %s: top-level value is not an object", path)
        return {}
    logging.info("Loaded %d cache entries from %s", len(payload), path)
    return payload


def save_cache(path: Path, cache: dict) -> None:
    """Persist the cache atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(cache, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")
    os.replace(tmp_path, path)
    logging.info("Saved %d cache entries to %s", len(cache), path)


def get_db_connection(database_url: str) -> psycopg.Connection:
    """Connect to Postgres."""
    conn = psycopg.connect(database_url)
    conn.autocommit = True
    return conn


def init_cache_table(conn: psycopg.Connection) -> None:
    """Create the cache table if needed."""
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS catalog_cache (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )


def load_cache_db(conn: psycopg.Connection) -> dict:
    """Load every cache entry from Postgres; unreadable state is an empty cache."""
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT key, value FROM catalog_cache")
            rows = cur.fetchall()
    except psycopg.Error as exc:
        logging.warning("Ignoring unreadable cache table: %s", exc)
        return {}

    cache = {}
    for key, value in rows:
        try:
            cache[key] = json.loads(value)
        except ValueError:
            logging.warning("Ignoring corrupt cache entry %s", key)
    logging.info("Loaded %d cache entries from database", len(cache))
    return cache


def save_cache_db(conn: psycopg.Connection, cache: dict) -> None:
    """Upsert every cache entry."""
    with conn.cursor() as cur:
        for key, value in sorted(cache.items()):
            cur.execute(
                """
                INSERT INTO catalog_cache (key, value)
                VALUES (%s, %s)
                ON CONFLICT (key)
                DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                """,
                (key, json.dumps(value, sort_keys=True, ensure_ascii=False)),
            )
    logging.info("Saved %d cache entries to database", len(cache))


def acquire_run_lock(conn: psycopg.Connection) -> bool:
    """Prevent overlapping runs against the same cache table."""
    with conn.cursor() as cur:
        cur.execute("SELECT pg_try_advisory_lock(%s)", (RUN_LOCK_KEY,))
        locked = bool(cur.fetchone()[0])

    if not locked:
        logging.warning("Another catalog run is already active. Exiting.")
    return locked


def release_run_lock(conn: psycopg.Connection) -> None:
    """Release advisory lock."""
    with conn.cursor() as cur:
        cur.execute("SELECT pg_advisory_unlock(%s)", (RUN_LOCK_KEY,))


def github_headers() -> dict:
    headers = {
        "User-Agent": "release-catalog",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if GITHUB_TOKEN:
        headers["Authorization"] = f"Bearer {GITHUB_TOKEN}"
    return headers


def github_get_list(url: str, params: dict) -> list[dict]:
    """GET one page of a GitHub list endpoint."""
    response = requests.get(url, headers=github_headers(), params=params, timeout=30)
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON list from {url}")
    return payload


def fetch_repositories(owner: str) -> list[dict]:
    """List public repositories, most recently updated first."""
    logging.info("Fetching public repositories for %s", owner)
    repos = github_get_list(
        GITHUB_REPOS_URL_TEMPLATE.format(owner=quote(owner)),
        {"type": "public", "per_page": GITHUB_PAGE_SIZE, "sort": "updated"},
    )
    logging.info("GitHub returned %d repositories for %s", len(repos), owner)
    return repos


def fetch_releases(owner: str, name: str) -> list[dict]:
    """List releases for one repository in GitHub's order (newest first)."""
    return github_get_list(
        GITHUB_RELEASES_URL_TEMPLATE.format(owner=quote(owner), name=quote(name)),
        {"per_page": GITHUB_PAGE_SIZE},
    )


def download_url(owner: str, name: str, tag: str) -> str:
    """Source archive URL for one release tag."""
    return GITHUB_DOWNLOAD_URL_TEMPLATE.format(owner=quote(owner), name=quote(name), tag=quote(tag))


def get_openai_client():
    """Lazy-init OpenAI client."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAI()
    return _openai_client


def generate_text(prompt: str, purpose: str) -> str:
    """Run one generation; any failure or empty answer comes back as ""."""
    try:
        client = get_openai_client()
        response = client.responses.create(model=AI_MODEL, input=prompt)
        return (response.output_text or "").strip()
    except Exception as exc:
        logging.exception("Text generation failed for %s: %s", purpose, exc)
        return ""


def repo_fallback_description(repo: dict) -> str:
    description = repo.get("description")
    if isinstance(description, str) and description.strip():
        return description.strip()
    return normalize_text(str(repo.get("name") or "")) or "Untitled repository"


def fallback_metadata(repo: dict) -> dict:
    """Metadata used when classification is unavailable."""
    return {"tags": [DEFAULT_TAG], "description": repo_fallback_description(repo)}


def build_classification_prompt(repo: dict) -> str:
    allowed = ", ".join(TAG_VOCABULARY)
    return f"""Classify this GitHub repository for a public project catalog.

Repository: {repo.get("name", "")}
Description: {repo.get("description") or "N/A"}
Primary language: {repo.get("language") or "Unknown"}

Allowed tags: {allowed}

Return only a JSON object of this form:
{{"tags": ["<tag>"], "description": "<one sentence>"}}

Rules:
- Use one or more tags, taken only from the allowed list.
- Use "{DEFAULT_TAG}" when nothing else fits.
- The description is one plain sentence of at most 25 words, with no marketing language.
- Do not write anything before or after the JSON object."""


def extract_json_object(text: str) -> dict | None:
    """Parse the first balanced {...} object in text, ignoring prose around it."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : index + 1])
                except ValueError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def validate_tags(raw_tags) -> list[str]:
    """Keep known tags in order; never return an empty list."""
    if not isinstance(raw_tags, list):
        return [DEFAULT_TAG]
    tags = []
    for raw_tag in raw_tags:
        if not isinstance(raw_tag, str):
            continue
        tag = raw_tag.strip().lower()
        if tag in TAG_VOCABULARY and tag not in tags:
            tags.append(tag)
    return tags or [DEFAULT_TAG]


def validate_metadata(parsed: dict, repo: dict) -> dict:
    description = parsed.get("description")
    if isinstance(description, str) and description.strip():
        description = normalize_text(description)
    else:
        description = repo_fallback_description(repo)
    return {"tags": validate_tags(parsed.get("tags")), "description": description}


def is_valid_metadata(value) -> bool:
    if not isinstance(value, dict):
        return False
    tags = value.get("tags")
    description = value.get("description")
    return (
        isinstance(tags, list)
        and bool(tags)
        and all(tag in TAG_VOCABULARY for tag in tags)
        and isinstance(description, str)
        and bool(description.strip())
    )


def classify_repository(cache: dict, repo: dict, allow_generation: bool = True) -> dict:
    """Return cached metadata or classify the repository; never raises for service problems."""
    key = metadata_cache_key(repo["id"])
    cached = cache.get(key)
    if is_valid_metadata(cached):
        return cached

    if not allow_generation:
        return fallback_metadata(repo)

    content = generate_text(build_classification_prompt(repo), purpose=f"metadata for {repo['name']}")
    if not content:
        logging.warning("No classification returned for %s; using fallback metadata", repo["name"])
        return fallback_metadata(repo)

    parsed = extract_json_object(content)
    if parsed is None:
        logging.warning("Unparsable classification for %s; using fallback metadata", repo["name"])
        return fallback_metadata(repo)

    metadata = validate_metadata(parsed, repo)
    cache[key] = metadata
    return metadata


def clean_release_body(body: str) -> str:
    """Strip non-text noise from release notes before narration."""
    text = re.sub(r"<!--.*?-->", "", body or "", flags=re.DOTALL)
    cleaned_lines = []
    for line in text.split("\n"):
        stripped = line.rstrip()
        if stripped.strip().startswith("!["):
            continue
        if not stripped.strip() and (not cleaned_lines or not cleaned_lines[-1]):
            continue
        cleaned_lines.append(stripped)

    cleaned = "\n".join(cleaned_lines).strip()
    if len(cleaned) > RELEASE_BODY_CHAR_LIMIT:
        cleaned = cleaned[:RELEASE_BODY_CHAR_LIMIT] + "..."
    return cleaned


def build_narration_prompt(repo: dict, release: dict, body: str) -> str:
    return f"""Rewrite these release notes as a short narrative update for a project page.

Project: {repo.get("name", "")}
Version: {release.get("tag_name", "")}

Release notes:
{body}

Rules:
- Write one or two factual paragraphs describing what changed in this version.
- Output HTML paragraphs only (<p>, with <strong> or <code> where useful).
- No greeting, no sign-off, no headings, no bullet lists, no emoji.
- Do not invent changes that are not in the notes."""


def strip_code_fence(text: str) -> str:
    """Remove a ```lang ... ``` wrapper around a model answer."""
    stripped = text.strip()
    if stripped.startswith("```"):
        opened = FENCE_OPEN_RE.sub("", stripped, count=1)
        if opened != stripped:
            stripped = opened
        else:
            stripped = FENCE_INLINE_LANG_RE.sub("", stripped[3:], count=1)
    if stripped.endswith("```"):
        stripped = FENCE_CLOSE_RE.sub("", stripped, count=1)
    return stripped.strip()


def sanitize_fragment(fragment: str) -> str:
    """Drop active content from a generated HTML fragment."""
    soup = BeautifulSoup(fragment, "html.parser")
    for element in soup.find_all(UNSAFE_FRAGMENT_TAGS):
        element.decompose()
    for element in soup.find_all(True):
        for attr in list(element.attrs):
            value = element.attrs[attr]
            if attr.lower().startswith("on"):
                del element.attrs[attr]
            elif isinstance(value, str) and re.sub(r"\s+", "", value).lower().startswith(UNSAFE_URL_SCHEMES):
                del element.attrs[attr]
    return str(soup).strip()


def narrate_release(cache: dict, repo: dict, release: dict, allow_generation: bool = True) -> str | None:
    """Return a cached or freshly generated HTML fragment for one release, or None."""
    key = post_cache_key(release["id"])
    cached = cache.get(key)
    if isinstance(cached, dict) and isinstance(cached.get("html"), str) and cached["html"].strip():
        return cached["html"]

    if not allow_generation:
        return None

    version = release.get("tag_name") or ""
    body = clean_release_body(release.get("body") or "")
    if not body:
        logging.info("Release %s %s has no notes; nothing to narrate", repo["name"], version)
        return None

    content = generate_text(
        build_narration_prompt(repo, release, body),
        purpose=f"release notes for {repo['name']} {version}",
    )
    if not content:
        logging.warning("No narration for %s %s; leaving it off the updates page", repo["name"], version)
        return None

    fragment = sanitize_fragment(strip_code_fence(content))
    if not fragment:
        logging.warning("Narration for %s %s was empty after cleanup", repo["name"], version)
        return None

    cache[key] = {"version": version, "date": release.get("published_at") or "", "html": fragment}
    return fragment


def build_project(cache: dict, repo: dict, owner: str, allow_generation: bool = True) -> dict:
    """Fetch releases, classify and narrate one repository."""
    name = repo["name"]
    try:
        releases = fetch_releases(owner, name)
    except (requests.RequestException, ValueError) as exc:
        logging.warning("Release fetch failed for %s: %s", name, exc)
        releases = []

    # drafts are not public and their tags may not exist yet
    releases = [release for release in releases if not release.get("draft")]

    metadata = classify_repository(cache, repo, allow_generation)

    posts = []
    for release in releases:
        fragment = narrate_release(cache, repo, release, allow_generation)
        if fragment is None:
            continue
        version = release.get("tag_name") or ""
        posts.append(
            {
                "version": version,
                "date": release.get("published_at") or "",
                "html": fragment,
                "download_url": download_url(owner, name, version),
            }
        )

    latest_release = None
    if releases:
        latest = releases[0]
        version = latest.get("tag_name") or ""
        latest_release = {
            "version": version,
            "date": latest.get("published_at") or "",
            "body": latest.get("body") or "",
            "download_url": download_url(owner, name, version),
        }

    return {"repo": repo, "metadata": metadata, "latest_release": latest_release, "posts": posts}


def build_projects(cache: dict, repos: list[dict], owner: str, allow_generation: bool = True) -> list[dict]:
    """Build projects in listing order, skipping forks and repositories that fail."""
    projects = []
    for repo in repos:
        if repo.get("fork"):
            continue

        name = repo.get("name", "<unnamed>")
        try:
            project = build_project(cache, repo, owner, allow_generation)
        except Exception as exc:
            logging.exception("Skipping repository %s: %s", name, exc)
            continue

        projects.append(project)
        logging.info(
            "Processed %s (tags=%s, posts=%d)",
            name,
            ",".join(project["metadata"]["tags"]),
            len(project["posts"]),
        )

    logging.info("Built %d projects from %d listed repositories", len(projects), len(repos))
    return projects


def page_slug(name: str) -> str:
    slug = SLUG_INVALID_RE.sub("-", (name or "").lower()).strip("-")
    return slug or "repo"


def update_page_path(name: str) -> str:
    return f"updates/{page_slug(name)}.html"


def project_tags(project: dict) -> list[str]:
    metadata = project.get("metadata")
    tags = metadata.get("tags") if metadata else None
    return list(tags) if tags else [DEFAULT_TAG]


def collect_tags(projects: list[dict]) -> list[str]:
    """Distinct tags across projects, in vocabulary order."""
    present = set()
    for project in projects:
        present.update(project_tags(project))
    return [tag for tag in TAG_VOCABULARY if tag in present]


def render_inline_markdown(escaped_text: str) -> str:
    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", escaped_text)
    return re.sub(r"`([^`]+)`", r"<code>\1</code>", text)


def markdown_to_html(markdown_text: str) -> str:
    """Render basic release-note markdown (headings, bullets, bold, code) as HTML."""
    if not markdown_text or not markdown_text.strip():
        return "<p><em>No changelog available.</em></p>"

    parts = []
    list_items = []
    for raw_line in re.sub(r"<!--.*?-->", "", markdown_text, flags=re.DOTALL).splitlines():
        line = raw_line.strip()
        bullet = re.match(r"^[-*]\s+(.*)$", line)
        if bullet:
            list_items.append(f"<li>{render_inline_markdown(html.escape(bullet.group(1)))}</li>")
            continue
        if list_items:
            parts.append("<ul>" + "".join(list_items) + "</ul>")
            list_items = []
        if not line:
            continue
        heading = re.match(r"^(#{1,6})\s+(.*)$", line)
        if heading:
            level = 4 if len(heading.group(1)) <= 2 else 5
            parts.append(f"<h{level}>{render_inline_markdown(html.escape(heading.group(2)))}</h{level}>")
        else:
            parts.append(f"<p>{render_inline_markdown(html.escape(line))}</p>")
    if list_items:
        parts.append("<ul>" + "".join(list_items) + "</ul>")

    return "\n".join(parts) or "<p><em>No changelog available.</em></p>"


def render_tag_chips(tags: list[str]) -> str:
    return " ".join(f'<span class="tag tag-{tag}">{html.escape(TAG_LABELS.get(tag, tag))}</span>' for tag in tags)


def render_project_card(project: dict) -> str:
    """Render one index card."""
    repo = project["repo"]
    tags = project_tags(project)
    metadata = project.get("metadata") or {}
    description = metadata.get("description") or repo_fallback_description(repo)
    latest = project.get("latest_release")
    name = str(repo.get("name", ""))

    if latest:
        badge = f'<span class="badge">{html.escape(latest["version"])}</span>'
        download = (
            f'<a class="btn-download" href="{html.escape(latest["download_url"])}">'
            f'Download {html.escape(latest["version"])} (.zip)</a>'
        )
        changelog = f"""
                    <details>
                        <summary>Latest changelog</summary>
                        <div class="changelog">{markdown_to_html(latest.get("body", ""))}</div>
                    </details>"""
        released = (
            f' | <span class="released">{html.escape(format_date_display(latest["date"]))}</span>'
            if format_date_display(latest["date"])
            else ""
        )
    else:
        badge = '<span class="badge no-release">No release</span>'
        download = ""
        changelog = ""
        released = ""

    updates_link = ""
    if project.get("posts"):
        count = len(project["posts"])
        updates_link = (
            f'<a class="updates-link" href="{update_page_path(name)}">'
            f"Release history ({count} update{'s' if count != 1 else ''})</a>"
        )

    language = repo.get("language") or "Unknown"
    return f"""
            <section class="repo" data-tags="{html.escape(' '.join(tags))}">
                <div class="repo-header-row">
                    <h3><a href="{html.escape(repo.get('html_url') or '')}" target="_blank" rel="noopener noreferrer">{html.escape(name)}</a></h3>
                    {badge}
                </div>
                <div class="repo-body">
                    <p class="tags">{render_tag_chips(tags)}</p>
                    <p class="description">{html.escape(description)}</p>
                    {download}
                    {updates_link}{changelog}
                    <p class="meta">
                        <span class="language">{html.escape(language)}</span> |
                        <span class="stars">&#9733; {int(repo.get('stargazers_count') or 0)}</span>{released}
                    </p>
                </div>
            </section>
"""


def generate_filter_script() -> str:
    """Generate JS for the index tag filter."""
    return """
<script>
(() => {
    const buttons = Array.from(document.querySelectorAll(".tag-filter button[data-tag]"));
    const repos = Array.from(document.querySelectorAll("section.repo[data-tags]"));

    function applyFilter(tag) {
        buttons.forEach((button) => {
            button.classList.toggle("active", button.dataset.tag === tag);
        });
        repos.forEach((repoEl) => {
            const tags = repoEl.dataset.tags.split(" ");
            repoEl.classList.toggle("hidden", tag !== "all" && !tags.includes(tag));
        });
    }

    buttons.forEach((button) => {
        button.addEventListener("click", () => applyFilter(button.dataset.tag));
    });

    const initial = new URLSearchParams(window.location.search).get("tag");
    applyFilter(initial && buttons.some((b) => b.dataset.tag === initial) ? initial : "all");
})();
</script>
"""


def generate_index_page(projects: list[dict], tags: list[str], generated_at: datetime, owner: str) -> str:
    """Generate the catalog index page."""
    filter_buttons = '<button type="button" data-tag="all" class="active">All</button>'
    for tag in tags:
        filter_buttons += f'<button type="button" data-tag="{tag}">{html.escape(TAG_LABELS.get(tag, tag))}</button>'

    repo_cards = ""
    if not projects:
        repo_cards = '<p class="empty-state">No repositories to show.</p>'
    for project in projects:
        repo_cards += render_project_card(project)

    profile_url = GITHUB_PROFILE_URL_TEMPLATE.format(owner=quote(owner))
    title = f"{owner} - {SITE_TITLE}"
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(title)}</title>
    <link rel="stylesheet" href="style.css">
</head>
<body>
    <header>
        <h1>{html.escape(SITE_TITLE)}</h1>
        <p class="subtitle">Generated on {generated_at.strftime("%B %d, %Y at %H:%M UTC")}</p>
    </header>
    <main>
        <div class="tag-filter">
            {filter_buttons}
        </div>
        <div class="repos">
{repo_cards}
        </div>
    </main>
    <footer>
        <p>Generated automatically from <a href="{profile_url}">github.com/{html.escape(owner)}</a>.</p>
    </footer>
{generate_filter_script()}
</body>
</html>
"""


def generate_update_page(project: dict, generated_at: datetime) -> str:
    """Generate the release history page for one project."""
    repo = project["repo"]
    name = str(repo.get("name", ""))

    articles = ""
    for post in project["posts"]:
        date_display = format_date_display(post["date"])
        date_html = f'<time datetime="{html.escape(post["date"])}">{html.escape(date_display)}</time>' if date_display else ""
        articles += f"""
            <article class="post">
                <div class="repo-header-row">
                    <h3>{html.escape(post["version"])}</h3>
                    {date_html}
                </div>
                <div class="ai-summary">
                    {post["html"]}
                </div>
                <p class="meta"><a href="{html.escape(post["download_url"])}">Download {html.escape(post["version"])} (.zip)</a></p>
            </article>
"""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(name)} - Release history</title>
    <link rel="stylesheet" href="../style.css">
</head>
<body>
    <header>
        <h1>{html.escape(name)} release history</h1>
        <nav>
            <a href="../">&larr; All projects</a>
            <a href="{html.escape(repo.get('html_url') or '')}" target="_blank" rel="noopener noreferrer">Repository</a>
        </nav>
    </header>
    <main>
{articles}
    </main>
    <footer>
        <p>Generated on {generated_at.strftime("%B %d, %Y at %H:%M UTC")}.</p>
    </footer>
</body>
</html>
"""


def generate_css() -> str:
    """Generate shared stylesheet."""
    return """:root {
    --bg-color: #0d1117;
    --card-bg: #161b22;
    --text-color: #c9d1d9;
    --muted-color: #8b949e;
    --link-color: #58a6ff;
    --border-color: #30363d;
    --accent-color: #238636;
}
* {
    box-sizing: border-box;
    margin: 0;
    padding: 0;
}
body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
    background-color: var(--bg-color);
    color: var(--text-color);
    line-height: 1.6;
    padding: 2rem;
    max-width: 1100px;
    margin: 0 auto;
}
h1 {
    color: #f0f6fc;
    margin-bottom: 0.5rem;
    font-size: 2rem;
}
.subtitle {
    color: var(--muted-color);
    margin-bottom: 1.2rem;
}
nav {
    margin-bottom: 1.6rem;
    display: flex;
    gap: 1rem;
}
nav a,
footer a,
.meta a,
.updates-link {
    color: var(--link-color);
    text-decoration: none;
}
nav a:hover,
.meta a:hover,
.updates-link:hover {
    text-decoration: underline;
}
.tag-filter {
    display: flex;
    flex-wrap: wrap;
    gap: 0.5rem;
    margin-bottom: 1.25rem;
}
.tag-filter button {
    background-color: #21262d;
    color: var(--text-color);
    border: 1px solid var(--border-color);
    border-radius: 12px;
    padding: 0.25rem 0.75rem;
    font-size: 0.8rem;
    cursor: pointer;
}
.tag-filter button.active {
    background-color: var(--accent-color);
    border-color: var(--accent-color);
    color: #fff;
}
.repos {
    display: grid;
    grid-template-columns: repeat(auto-fill, minmax(320px, 1fr));
    gap: 1.25rem;
}
.repo,
.post {
    background-color: var(--card-bg);
    border: 1px solid var(--border-color);
    border-radius: 6px;
    padding: 1.25rem;
}
.post {
    margin-bottom: 1.25rem;
}
.repo.hidden {
    display: none;
}
.repo-body {
    display: flex;
    flex-direction: column;
    gap: 0.6rem;
}
.repo-header-row {
    display: flex;
    justify-content: space-between;
    align-items: center;
    gap: 0.75rem;
    margin-bottom: 0.5rem;
}
.repo h3 {
    font-size: 1.1rem;
}
.repo h3 a {
    color: var(--link-color);
    text-decoration: none;
}
.post h3 {
    color: #f0f6fc;
}
.post time {
    color: var(--muted-color);
    font-size: 0.85rem;
}
.badge {
    background-color: var(--accent-color);
    color: #fff;
    padding: 0.1rem 0.5rem;
    border-radius: 12px;
    font-size: 0.75rem;
    white-space: nowrap;
}
.badge.no-release {
    background-color: var(--border-color);
}
.tag {
    display: inline-block;
    border: 1px solid var(--border-color);
    color: var(--muted-color);
    font-size: 0.72rem;
    border-radius: 12px;
    padding: 0.05rem 0.45rem;
}
.description {
    color: var(--muted-color);
    font-size: 0.9rem;
}
.btn-download {
    display: inline-block;
    width: fit-content;
    background-color: var(--accent-color);
    color: #fff;
    padding: 0.35rem 0.9rem;
    border-radius: 6px;
    font-size: 0.85rem;
    text-decoration: none;
}
.btn-download:hover {
    background-color: #2ea043;
}
details summary {
    cursor: pointer;
    color: var(--link-color);
    font-size: 0.85rem;
}
.changelog {
    border: 1px solid var(--border-color);
    border-radius: 6px;
    padding: 0.75rem;
    margin-top: 0.5rem;
    font-size: 0.8rem;
    max-height: 220px;
    overflow-y: auto;
}
.changelog h4,
.changelog h5 {
    color: var(--link-color);
    margin: 0.5rem 0 0.25rem;
}
.changelog ul {
    padding-left: 1.2rem;
}
.meta {
    font-size: 0.8rem;
    color: var(--muted-color);
    margin-top: auto;
    padding-top: 0.5rem;
    border-top: 1px solid #21262d;
}
.language {
    color: var(--accent-color);
}
.ai-summary p {
    margin-bottom: 0.75rem;
    font-size: 0.95rem;
}
.ai-summary p:last-child {
    margin-bottom: 0;
}
.empty-state {
    color: var(--muted-color);
    font-style: italic;
    margin: 1rem 0 2rem;
}
footer {
    margin-top: 2rem;
    color: var(--muted-color);
    font-size: 0.85rem;
}
@media (max-width: 700px) {
    body {
        padding: 1rem;
    }
    .repo-header-row {
        flex-direction: column;
        align-items: flex-start;
    }
}
"""


def assemble_site(projects: list[dict], generated_at: datetime, owner: str) -> dict[str, str]:
    """Map output paths (relative to the site root) to document contents."""
    documents = {
        "index.html": generate_index_page(projects, collect_tags(projects), generated_at, owner),
        "style.css": generate_css(),
    }
    for project in projects:
        if not project.get("posts"):
            continue
        documents[update_page_path(str(project["repo"].get("name", "")))] = generate_update_page(project, generated_at)
    return documents


def write_text(path: Path, content: str) -> None:
    """Write file with parent directory creation."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def remove_stale_update_pages(output_dir: Path, documents: dict[str, str]) -> None:
    """Delete update pages left by earlier runs that this run does not produce."""
    updates_dir = output_dir / "updates"
    if not updates_dir.is_dir():
        return
    for path in sorted(updates_dir.glob("*.html")):
        if f"updates/{path.name}" not in documents:
            path.unlink()
            logging.info("Removed stale update page %s", path)


def write_site(output_dir: Path, documents: dict[str, str]) -> None:
    """Write all generated documents, dropping update pages that no longer apply."""
    remove_stale_update_pages(output_dir, documents)
    for relative_path, content in documents.items():
        write_text(output_dir / relative_path, content)
    logging.info("Saved %d documents to %s", len(documents), output_dir)


def generate_site(cache: dict, owner: str, output_dir: Path, allow_generation: bool = True) -> bool:
    """Fetch, enrich, assemble and write the site. Returns False when nothing was generated."""
    try:
        repos = fetch_repositories(owner)
    except (requests.RequestException, ValueError) as exc:
        logging.exception("Repository listing failed for %s: %s", owner, exc)
        repos = []

    if not repos:
        logging.error("No repositories listed for %s; skipping generation", owner)
        return False

    projects = build_projects(cache, repos, owner, allow_generation)
    documents = assemble_site(projects, datetime.now(tz=timezone.utc), owner)
    write_site(output_dir, documents)
    return True


def run_with_file_cache(cache_file: Path, owner: str, output_dir: Path, allow_generation: bool) -> None:
    cache = load_cache(cache_file)
    try:
        generate_site(cache, owner, output_dir, allow_generation)
    finally:
        try:
            save_cache(cache_file, cache)
        except OSError:
            logging.exception("Cache persistence failed for %s", cache_file)
            raise


def run_with_database_cache(database_url: str, owner: str, output_dir: Path, allow_generation: bool) -> None:
    try:
        conn = get_db_connection(database_url)
    except psycopg.Error as exc:
        logging.exception("Cache database connection failed: %s", exc)
        raise SystemExit(1) from exc

    lock_acquired = False
    try:
        init_cache_table(conn)

        lock_acquired = acquire_run_lock(conn)
        if not lock_acquired:
            return

        cache = load_cache_db(conn)
        try:
            generate_site(cache, owner, output_dir, allow_generation)
        finally:
            try:
                save_cache_db(conn, cache)
            except psycopg.Error:
                logging.exception("Cache persistence to database failed")
                raise
    finally:
        try:
            if lock_acquired:
                release_run_lock(conn)
        finally:
            conn.close()


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    allow_generation = not args.cache_only
    if args.cache_only:
        logging.info("Cache-only mode: the generative service will not be called")

    if CACHE_DATABASE_URL:
        run_with_database_cache(CACHE_DATABASE_URL, args.user, args.output_dir, allow_generation)
    else:
        run_with_file_cache(args.cache_file, args.user, args.output_dir, allow_generation)


if __name__ == "__main__":
    main()
