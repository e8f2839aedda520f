import json

import pytest

import release_catalog


def make_repo(repo_id: int, name: str, description: str | None = "A test project.", fork: bool = False) -> dict:
    return {
        "id": repo_id,
        "name": name,
        "description": description,
        "language": "PHP",
        "stargazers_count": 7,
        "html_url": f"https://github.com/guilamu/{name}",
        "fork": fork,
    }


def make_release(release_id: int, tag: str, body: str = "## Changes\n- Fixed a bug", published_at: str = "2025-03-04T10:00:00Z") -> dict:
    return {"id": release_id, "tag_name": tag, "published_at": published_at, "body": body}


class FakeGenerator:
    """Stands in for the generative service; records every prompt."""

    def __init__(self, metadata_reply=None, narration_reply="<p>Fixes a bug in the settings screen.</p>", fail_versions=()):
        if metadata_reply is None:
            metadata_reply = json.dumps({"tags": ["wordpress"], "description": "Adds a widget to WordPress."})
        self.metadata_reply = metadata_reply
        self.narration_reply = narration_reply
        self.fail_versions = set(fail_versions)
        self.prompts = []

    def __call__(self, prompt: str, purpose: str) -> str:
        self.prompts.append(prompt)
        if prompt.startswith("Classify this GitHub repository"):
            return self.metadata_reply
        for version in self.fail_versions:
            if f"Version: {version}\n" in prompt:
                return ""
        return self.narration_reply

    @property
    def classification_calls(self) -> int:
        return sum(1 for prompt in self.prompts if prompt.startswith("Classify this GitHub repository"))

    @property
    def narration_calls(self) -> int:
        return len(self.prompts) - self.classification_calls


@pytest.fixture
def fake_generator(monkeypatch):
    generator = FakeGenerator()
    monkeypatch.setattr(release_catalog, "generate_text", generator)
    return generator


@pytest.fixture
def no_generation(monkeypatch):
    def fail(prompt, purpose):
        raise AssertionError(f"generative service called for {purpose}")

    monkeypatch.setattr(release_catalog, "generate_text", fail)
