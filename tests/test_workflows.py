import pytest

from mfer.core import workflows
from mfer.core.configuration import MferConfig
from mfer.core.errors import ConfigurationError, UsageError
from mfer.core.report import parse_failures
from mfer.core.workflows import (
    WorkflowContext,
    check_run_options,
    clone_group,
    install_group,
    lib_pull,
    pull_group,
    run_group,
)


def _ctx(console, mfe_dir, probe=lambda p: True, **extra):
    config = MferConfig(
        mfe_directory=str(mfe_dir),
        groups={"all": ["mfe1", "mfe2", "mfe3"], "home": ["mfe1", "mfe2"], "solo": ["mfe1"]},
        **extra,
    )
    return WorkflowContext(config=config, console=console, probe=probe, grace_seconds=1)


def test_check_run_options():
    check_run_options(None, False)
    check_run_options("npm test", True)
    with pytest.raises(UsageError):
        check_run_options(None, True)
    with pytest.raises(UsageError):
        check_run_options("", False)


def test_default_run_uses_npm_start_concurrently(console, mfe_dir, monkeypatch):
    monkeypatch.setattr(workflows, "DEFAULT_RUN_COMMAND", 'echo "started $(basename "$PWD")"')
    assert run_group(_ctx(console, mfe_dir), "solo") == 0
    out = console.text()
    assert "Running micro frontends in group: solo..." in out
    assert "mfe1 | started mfe1" in out
    assert "All micro frontends in group 'solo' exited successfully." in out


def test_default_run_stops_the_rest_when_one_exits(console, mfe_dir, monkeypatch):
    monkeypatch.setattr(workflows, "DEFAULT_RUN_COMMAND", '[ "$(basename "$PWD")" = mfe1 ] || sleep 30')
    assert run_group(_ctx(console, mfe_dir), "home") == 1
    out = console.text()
    assert "One or more micro frontends failed to start." in out
    assert parse_failures(out) == [("mfe2", 143)]


def test_install_continues_after_failure(console, mfe_dir, monkeypatch):
    monkeypatch.setattr(workflows, "INSTALL_COMMAND", '[ "$(basename "$PWD")" != mfe1 ]')
    assert install_group(_ctx(console, mfe_dir)) == 1
    out = console.text()
    assert "[mfe3] Running" in out
    assert parse_failures(out) == [("mfe1", 1)]
    assert "One or more installs failed." in out


def test_pull_skips_invalid_and_runs_valid(console, mfe_dir, monkeypatch):
    monkeypatch.setattr(workflows, "PULL_COMMAND", "echo pulled")
    ctx = _ctx(console, mfe_dir, probe=lambda p: p.name != "mfe2")
    assert pull_group(ctx) == 0
    out = console.text()
    assert "mfe2: not a git repository" in out
    assert "Pulling latest changes for 2 repositories in group: all..." in out
    assert "mfe1 | pulled" in out and "mfe3 | pulled" in out
    assert "mfe2 | pulled" not in out


def test_pull_failure_wording(console, mfe_dir, monkeypatch):
    monkeypatch.setattr(workflows, "PULL_COMMAND", "exit 1")
    assert pull_group(_ctx(console, mfe_dir), "home") == 1
    out = console.text()
    assert "One or more repositories failed to pull." in out
    assert f"Repository mfe1 failed to pull (cwd: {mfe_dir / 'mfe1'})" in out
    assert {name for name, _code in parse_failures(out)} == {"mfe1", "mfe2"}


def test_clone_requires_base_url(console, mfe_dir):
    with pytest.raises(ConfigurationError, match="base_github_url"):
        clone_group(_ctx(console, mfe_dir))


def test_clone_nothing_missing(console, mfe_dir):
    ctx = _ctx(console, mfe_dir, base_github_url="https://example.invalid/acme")
    assert clone_group(ctx) == 0
    out = console.text()
    assert "All repositories in the group already exist." in out
    assert "✓ mfe1" in out


def test_clone_runs_in_parent_directory(console, tmp_path, monkeypatch):
    base = tmp_path / "fresh"
    seen = []
    def capture(ctx, targets, spec, wording):
        seen.extend(targets)
        return 0

    monkeypatch.setattr(workflows, "execute_batch", capture)
    ctx = _ctx(console, base, base_github_url="https://example.invalid/acme/")
    assert clone_group(ctx, "home") == 0
    assert base.is_dir()
    assert [t.command for t in seen] == [
        "git clone https://example.invalid/acme/mfe1.git",
        "git clone https://example.invalid/acme/mfe2.git",
    ]
    assert {t.working_directory for t in seen} == {str(base)}


def test_lib_pull_requires_library_settings(console, mfe_dir):
    with pytest.raises(ConfigurationError, match="Library configuration not found"):
        lib_pull(_ctx(console, mfe_dir))
