"""Tests for configuration loading and naming helpers."""

from pathlib import Path

from agman.config import Config, load_config_file, save_config_file


class TestNaming:
    def test_task_id_sanitizes_branch(self):
        assert Config.task_id("app", "feat") == "app--feat"
        assert Config.task_id("app", "feature/login") == "app--feature-login"

    def test_parse_task_id(self):
        assert Config.parse_task_id("app--feat") == ("app", "feat")
        assert Config.parse_task_id("app") is None
        assert Config.parse_task_id("--feat") is None

    def test_tmux_session_name(self):
        assert Config.tmux_session_name("svcA", "feat/x") == "(svcA)__feat-x"

    def test_worktree_path(self):
        config = Config(base_dir=Path("/h/.agman"), repos_dir=Path("/r"))
        assert config.worktree_path("app", "feature/login") == Path("/r/app-wt/feature-login")
        assert config.task_dir("app", "feat") == Path("/h/.agman/tasks/app--feat")


class TestFromEnv:
    def test_env_overrides(self, monkeypatch, workspace):
        monkeypatch.setenv("AGMAN_HOME", str(workspace / "home"))
        monkeypatch.setenv("AGMAN_REPOS_DIR", str(workspace / "code"))
        monkeypatch.setenv("AGMAN_AGENT_COMMAND", "my-agent --fast")
        monkeypatch.setenv("AGMAN_LOG_LEVEL", "debug")
        monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)
        config = Config.from_env()
        assert config.base_dir == workspace / "home"
        assert config.repos_dir == workspace / "code"
        assert config.agent_command == "my-agent --fast"
        assert config.log_level == "DEBUG"
        assert config.slack_bot_token is None

    def test_repos_dir_from_config_file(self, monkeypatch, workspace):
        home = workspace / "home"
        save_config_file(home, workspace / "from-file")
        monkeypatch.setenv("AGMAN_HOME", str(home))
        monkeypatch.delenv("AGMAN_REPOS_DIR", raising=False)
        assert Config.from_env().repos_dir == workspace / "from-file"

    def test_env_wins_over_config_file(self, monkeypatch, workspace):
        home = workspace / "home"
        save_config_file(home, workspace / "from-file")
        monkeypatch.setenv("AGMAN_HOME", str(home))
        monkeypatch.setenv("AGMAN_REPOS_DIR", str(workspace / "from-env"))
        assert Config.from_env().repos_dir == workspace / "from-env"

    def test_broken_config_file_is_ignored(self, workspace):
        (workspace / "config.toml").write_text("repos_dir = [unterminated")
        assert load_config_file(workspace) == {}


class TestDefaultFiles:
    def test_init_writes_defaults_once(self, workspace):
        config = Config(base_dir=workspace / "agman", repos_dir=workspace)
        written = config.init_default_files()
        assert config.flow_path("new") in written
        assert config.prompt_path("repo-inspector") in written
        assert config.command_path("rebase") in written
        assert config.tasks_dir.is_dir()

        config.flow_path("new").write_text("custom")
        assert config.init_default_files() == []
        assert config.flow_path("new").read_text() == "custom"

    def test_force_overwrites(self, workspace):
        config = Config(base_dir=workspace / "agman", repos_dir=workspace)
        config.init_default_files()
        config.flow_path("new").write_text("custom")
        config.init_default_files(force=True)
        assert config.flow_path("new").read_text().startswith("name: new")
