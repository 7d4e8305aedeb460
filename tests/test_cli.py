"""
Tests for the command line interface.
"""

import json
import os

import pytest
from typer.testing import CliRunner

from diffscribe import __version__
from diffscribe.cli import app
from diffscribe.config.settings import Settings
from diffscribe.core import DiffScribe, DiffScribeError

runner = CliRunner()


@pytest.fixture
def scribe_factory(monkeypatch, fake_backend, make_config, char_tokenizer):
    """Replace backend wiring with a FakeBackend; returns the backend in use."""
    backend = fake_backend(default="Print a greeting.")

    def from_settings(settings):
        return DiffScribe(make_config(), backend, char_tokenizer)

    monkeypatch.setattr("diffscribe.cli.DiffScribe.from_settings", from_settings)
    return backend


@pytest.fixture
def staged_repo(git_repo, monkeypatch):
    """Temporary repository with app.py staged, used as the working directory."""
    root = git_repo.working_tree_dir
    with open(os.path.join(root, "app.py"), "w") as f:
        f.write("print('hi')\n")
    git_repo.index.add(["app.py"])
    monkeypatch.chdir(root)
    return git_repo


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


class TestSummarize:
    """Tests for `diffscribe summarize`."""

    def test_diff_file(self, tmp_path, scribe_factory, make_file_diff):
        diff_file = tmp_path / "change.patch"
        diff_file.write_text(make_file_diff("src/app.py", added=["print('hi')"]))

        result = runner.invoke(app, ["summarize", "--diff", str(diff_file), "--quiet"])

        assert result.exit_code == 0
        assert "Update src/app.py" in result.output
        assert "[src/app.py] Print a greeting." in result.output
        assert len(scribe_factory.calls) == 1

    def test_stdin(self, scribe_factory, make_file_diff):
        diff = make_file_diff("lib.py", added=["x = 1"])

        result = runner.invoke(app, ["summarize", "--diff", "-", "--quiet"], input=diff)

        assert result.exit_code == 0
        assert "[lib.py] Print a greeting." in result.output

    def test_malformed_diff(self, tmp_path, scribe_factory):
        diff_file = tmp_path / "notes.txt"
        diff_file.write_text("just some text\n")

        result = runner.invoke(app, ["summarize", "--diff", str(diff_file)])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert scribe_factory.calls == []

    def test_missing_file(self, tmp_path, scribe_factory):
        result = runner.invoke(app, ["summarize", "--diff", str(tmp_path / "nope.patch")])

        assert result.exit_code == 1

    def test_staged_changes_by_default(self, staged_repo, scribe_factory):
        result = runner.invoke(app, ["summarize", "--quiet"])

        assert result.exit_code == 0
        assert "Add app.py" in result.output


class TestPrepareCommitMsg:
    """Tests for the hook entry point."""

    def test_writes_message_above_template(self, staged_repo, scribe_factory, tmp_path):
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("# Please enter the commit message\n")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert message_file.read_text() == (
            "Add app.py\n\n[app.py] Print a greeting.\n\n# Please enter the commit message\n"
        )

    @pytest.mark.parametrize("source", ["message", "template", "merge", "squash", "commit"])
    def test_skipped_sources_leave_file_alone(self, staged_repo, scribe_factory, tmp_path, source):
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("user message\n")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file), source, "HEAD"])

        assert result.exit_code == 0
        assert message_file.read_text() == "user message\n"
        assert scribe_factory.calls == []

    def test_nothing_staged(self, git_repo, scribe_factory, tmp_path, monkeypatch):
        monkeypatch.chdir(git_repo.working_tree_dir)
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert message_file.read_text() == ""

    def test_failure_leaves_file_untouched(self, staged_repo, tmp_path, monkeypatch):
        def broken(settings):
            raise DiffScribeError("Failed to initialize AI backend: no key")

        monkeypatch.setattr("diffscribe.cli.DiffScribe.from_settings", broken)
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("# template\n")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert "no key" in result.output
        assert message_file.read_text() == "# template\n"

    def test_missing_api_key_falls_back_to_placeholders(self, staged_repo, tmp_path, monkeypatch, char_tokenizer):
        monkeypatch.setattr("diffscribe.core.get_tokenizer", lambda backend_type, model: char_tokenizer)
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("# template\n")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert message_file.read_text() == "Add app.py\n\n[app.py] [summary unavailable]\n\n# template\n"

    def test_invalid_configuration_does_not_block_commit(self, staged_repo, tmp_path):
        config_file = tmp_path / "broken.json"
        config_file.write_text(json.dumps({"pipeline": {"worker_pool_size": 0}}))
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("# template\n")

        result = runner.invoke(app, ["--config", str(config_file), "prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert "invalid configuration" in result.output
        assert message_file.read_text() == "# template\n"

    def test_broken_template_fails_hook(self, staged_repo, tmp_path, monkeypatch, char_tokenizer):
        monkeypatch.setattr("diffscribe.core.get_tokenizer", lambda backend_type, model: char_tokenizer)
        config_file = tmp_path / "custom.json"
        config_file.write_text(json.dumps({"prompts": {"summary": "{% for x in %}"}}))
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("# template\n")

        result = runner.invoke(app, ["--config", str(config_file), "prepare-commit-msg", str(message_file)])

        assert result.exit_code == 1
        assert "diffscribe error" in result.output
        assert message_file.read_text() == "# template\n"

    def test_outside_repository(self, tmp_path, scribe_factory, monkeypatch):
        monkeypatch.chdir(tmp_path)
        message_file = tmp_path / "COMMIT_EDITMSG"
        message_file.write_text("")

        result = runner.invoke(app, ["prepare-commit-msg", str(message_file)])

        assert result.exit_code == 0
        assert message_file.read_text() == ""


class TestHookCommands:
    """Tests for install and uninstall."""

    def test_install_then_uninstall(self, git_repo, monkeypatch):
        monkeypatch.chdir(git_repo.working_tree_dir)
        hook = os.path.join(git_repo.git_dir, "hooks", "prepare-commit-msg")

        result = runner.invoke(app, ["install"])
        assert result.exit_code == 0
        assert os.path.exists(hook)

        result = runner.invoke(app, ["uninstall"])
        assert result.exit_code == 0
        assert not os.path.exists(hook)

    def test_install_refuses_foreign_hook(self, git_repo, monkeypatch):
        monkeypatch.chdir(git_repo.working_tree_dir)
        hooks_dir = os.path.join(git_repo.git_dir, "hooks")
        os.makedirs(hooks_dir, exist_ok=True)
        with open(os.path.join(hooks_dir, "prepare-commit-msg"), "w") as f:
            f.write("#!/bin/sh\necho mine\n")

        result = runner.invoke(app, ["install"])

        assert result.exit_code == 1


class TestConfigCommand:
    """Tests for `diffscribe config`."""

    def test_show(self):
        result = runner.invoke(app, ["config", "--show"])

        assert result.exit_code == 0
        assert "diffscribe configuration" in result.output

    def test_invalid_backend(self):
        result = runner.invoke(app, ["config", "--backend", "llamacpp"])

        assert result.exit_code == 1

    def test_save(self):
        result = runner.invoke(app, ["config", "--backend", "ollama", "--model", "llama3", "--save"])

        assert result.exit_code == 0
        saved = json.loads((Settings.default_config_dir() / "config.json").read_text())
        assert saved["ai"]["backend_type"] == "ollama"
        assert saved["ai"]["model"] == "llama3"

    def test_config_file_option(self, tmp_path):
        config_file = tmp_path / "custom.json"
        config_file.write_text(json.dumps({"pipeline": {"worker_pool_size": 7}}))

        result = runner.invoke(app, ["--config", str(config_file), "config", "--show"])

        assert result.exit_code == 0
        assert "Worker pool size: 7" in result.output
