"""Git provider tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeRunner
from devinfra.errors import ValidationError
from devinfra.providers import GitProvider
from devinfra.providers.git import SourceKind, classify_source, repo_name_from_url, validate_url


@pytest.mark.parametrize(
    ("url", "name"),
    [
        ("https://github.com/user/MyApp.git", "myapp"),
        ("https://github.com/user/myapp/", "myapp"),
        ("git@github.com:user/myapp.git", "myapp"),
        ("git@host:myapp.git", "myapp"),
        ("ssh://git@host/group/sub/tool", "tool"),
    ],
)
def test_repo_name_from_url(url: str, name: str) -> None:
    assert repo_name_from_url(url) == name


@pytest.mark.parametrize(
    "url",
    ["ext::sh -c touch% /tmp/pwned", "file:///srv/repo.git", "ssh://-oProxyCommand=x/repo"],
)
def test_validate_url_rejects_dangerous_transports(url: str) -> None:
    with pytest.raises(ValidationError):
        validate_url(url)


def test_classify_source() -> None:
    assert classify_source("https://example.com/a.git") is SourceKind.GIT_URL
    assert classify_source("git@example.com:a.git") is SourceKind.GIT_URL
    assert classify_source("./checkout") is SourceKind.LOCAL_PATH
    assert classify_source("/srv/app") is SourceKind.LOCAL_PATH


def test_clone_invocation_is_bounded(tmp_path: Path) -> None:
    runner = FakeRunner()
    git = GitProvider(runner=runner, timeout=900)  # type: ignore[arg-type]
    destination = tmp_path / "myapp"

    assert git.clone("https://example.com/user/myapp.git", destination) == destination

    assert runner.calls == [
        ["git", "clone", "--", "https://example.com/user/myapp.git", str(destination)]
    ]
    assert destination.is_dir()


def test_clone_refuses_ext_transport(tmp_path: Path) -> None:
    runner = FakeRunner()
    git = GitProvider(runner=runner)  # type: ignore[arg-type]

    with pytest.raises(ValidationError):
        git.clone("ext::sh -c id", tmp_path / "x")
    assert runner.calls == []
