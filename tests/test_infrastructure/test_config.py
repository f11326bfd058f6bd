"""Tests for configuration."""

from pressroom.infrastructure.config import TimeoutConfig, read_env_file


class TestReadEnvFile:
    def test_reads_env_values(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("BULK_ITEM_DELAY=0.5\nBULK_MAX_WORKERS=2\n")
        monkeypatch.chdir(tmp_path)

        result = read_env_file(["BULK_ITEM_DELAY", "BULK_MAX_WORKERS"])
        assert result == {"BULK_ITEM_DELAY": "0.5", "BULK_MAX_WORKERS": "2"}

    def test_strips_quotes(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text('PRESSROOM_DB_PATH="/tmp/x.db"\nPRESSROOM_COLLABORATORS=\'pkg.mod:build\'\n')
        monkeypatch.chdir(tmp_path)

        result = read_env_file(["PRESSROOM_DB_PATH", "PRESSROOM_COLLABORATORS"])
        assert result["PRESSROOM_DB_PATH"] == "/tmp/x.db"
        assert result["PRESSROOM_COLLABORATORS"] == "pkg.mod:build"

    def test_skips_comments_and_unrequested_keys(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("# comment\nKEY1=value1\nKEY2=value2\n")
        monkeypatch.chdir(tmp_path)

        assert read_env_file(["KEY1"]) == {"KEY1": "value1"}

    def test_missing_file_returns_empty(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert read_env_file(["KEY1"]) == {}

    def test_empty_values_skipped(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("KEY1=\n")
        monkeypatch.chdir(tmp_path)

        assert "KEY1" not in read_env_file(["KEY1"])


class TestTimeoutConfig:
    def test_defaults_are_positive(self):
        config = TimeoutConfig()
        for name in ("content", "metadata", "images", "publisher", "media", "feed"):
            assert config.for_collaborator(name) > 0

    def test_named_lookup(self):
        config = TimeoutConfig(generation=1, metadata=2, images=3, publish=4, media_upload=5, feed=6)
        assert config.for_collaborator("content") == 1
        assert config.for_collaborator("metadata") == 2
        assert config.for_collaborator("images") == 3
        assert config.for_collaborator("publisher") == 4
        assert config.for_collaborator("media") == 5
        assert config.for_collaborator("feed") == 6

    def test_unknown_name_uses_publish_timeout(self):
        config = TimeoutConfig(publish=7)
        assert config.for_collaborator("something-else") == 7

    def test_uniform(self):
        config = TimeoutConfig.uniform(0.25)
        assert config.generation == config.feed == config.media_upload == 0.25
