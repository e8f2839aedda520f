import json

import pytest
import requests

import release_catalog
from conftest import make_release, make_repo


@pytest.fixture
def releases_by_name(monkeypatch):
    releases = {}

    def fake_fetch_releases(owner, name):
        value = releases.get(name, [])
        if isinstance(value, Exception):
            raise value
        return value

    monkeypatch.setattr(release_catalog, "fetch_releases", fake_fetch_releases)
    return releases


def test_forks_are_excluded(fake_generator, releases_by_name) -> None:
    repos = [make_repo(1, "alpha", fork=True), make_repo(2, "beta")]
    projects = release_catalog.build_projects({}, repos, "guilamu")
    assert [project["repo"]["name"] for project in projects] == ["beta"]
    assert fake_generator.classification_calls == 1


def test_release_fetch_failure_degrades_to_no_releases(fake_generator, releases_by_name) -> None:
    releases_by_name["beta"] = requests.ConnectionError("github down")
    projects = release_catalog.build_projects({}, [make_repo(2, "beta")], "guilamu")

    assert len(projects) == 1
    assert projects[0]["posts"] == []
    assert projects[0]["latest_release"] is None
    assert projects[0]["metadata"]["tags"] == ["wordpress"]


def test_narration_failure_only_drops_that_release(fake_generator, releases_by_name) -> None:
    fake_generator.fail_versions = {"v2.0.0"}
    releases_by_name["beta"] = [
        make_release(12, "v2.0.0", published_at="2025-05-01T00:00:00Z"),
        make_release(11, "v1.0.0", published_at="2025-01-01T00:00:00Z"),
    ]
    project = release_catalog.build_projects({}, [make_repo(2, "beta")], "guilamu")[0]

    assert [post["version"] for post in project["posts"]] == ["v1.0.0"]
    assert project["posts"][0]["download_url"] == "https://github.com/guilamu/beta/archive/refs/tags/v1.0.0.zip"
    # headline release does not depend on narration
    assert project["latest_release"]["version"] == "v2.0.0"
    assert project["latest_release"]["download_url"] == "https://github.com/guilamu/beta/archive/refs/tags/v2.0.0.zip"


def test_posts_keep_release_order(fake_generator, releases_by_name) -> None:
    releases_by_name["beta"] = [make_release(13, "v3.0.0"), make_release(12, "v2.0.0"), make_release(11, "v1.0.0")]
    project = release_catalog.build_projects({}, [make_repo(2, "beta")], "guilamu")[0]
    assert [post["version"] for post in project["posts"]] == ["v3.0.0", "v2.0.0", "v1.0.0"]


def test_unexpected_failure_skips_only_that_repository(fake_generator, releases_by_name) -> None:
    releases_by_name["b"] = RuntimeError("unexpected payload")
    repos = [make_repo(1, "a"), make_repo(2, "b"), make_repo(3, "c")]
    projects = release_catalog.build_projects({}, repos, "guilamu")
    assert [project["repo"]["name"] for project in projects] == ["a", "c"]


def test_second_run_with_saved_cache_makes_no_calls(fake_generator, releases_by_name, tmp_path) -> None:
    releases_by_name["beta"] = [make_release(11, "v1.0.0")]
    repos = [make_repo(2, "beta")]
    cache_path = tmp_path / "cache.json"

    cache = {}
    first = release_catalog.build_projects(cache, repos, "guilamu")
    release_catalog.save_cache(cache_path, cache)
    calls_after_first_run = len(fake_generator.prompts)

    second = release_catalog.build_projects(release_catalog.load_cache(cache_path), repos, "guilamu")

    assert len(fake_generator.prompts) == calls_after_first_run
    assert json.dumps(second, sort_keys=True) == json.dumps(first, sort_keys=True)


def test_generate_site_skips_when_listing_fails(monkeypatch, tmp_path) -> None:
    def broken_listing(owner):
        raise requests.ConnectionError("github down")

    monkeypatch.setattr(release_catalog, "fetch_repositories", broken_listing)
    assert release_catalog.generate_site({}, "guilamu", tmp_path / "site") is False
    assert not (tmp_path / "site").exists()


def test_file_cache_is_saved_when_run_aborts(fake_generator, releases_by_name, monkeypatch, tmp_path) -> None:
    """Entries produced before a fatal error still reach disk."""
    monkeypatch.setattr(release_catalog, "fetch_repositories", lambda owner: [make_repo(2, "beta")])

    def broken_assembly(projects, generated_at, owner):
        raise RuntimeError("disk full")

    monkeypatch.setattr(release_catalog, "assemble_site", broken_assembly)
    cache_path = tmp_path / "cache.json"

    with pytest.raises(RuntimeError):
        release_catalog.run_with_file_cache(cache_path, "guilamu", tmp_path / "site", True)

    saved = release_catalog.load_cache(cache_path)
    assert release_catalog.metadata_cache_key(2) in saved


def test_draft_releases_are_ignored(fake_generator, releases_by_name) -> None:
    draft = make_release(12, "v2.0.0-draft")
    draft["draft"] = True
    releases_by_name["beta"] = [draft, make_release(11, "v1.0.0")]
    project = release_catalog.build_projects({}, [make_repo(2, "beta")], "guilamu")[0]

    assert [post["version"] for post in project["posts"]] == ["v1.0.0"]
    assert project["latest_release"]["version"] == "v1.0.0"
    assert all("v2.0.0-draft" not in prompt for prompt in fake_generator.prompts)
