"""
Tests for the command line.

Tests cover:
- init/add/list/grant/revoke happy path
- Value input from stdin and prompts
- Error reporting and exit codes
- export/import/status/config
"""
import orjson
import pytest
from click.testing import CliRunner

from secretsage.cli import ValueSource, cli
from secretsage.envfile import parse_env


@pytest.fixture
def runner(project, home, monkeypatch):
    monkeypatch.chdir(project)
    return CliRunner(env={"HOME": str(home)})


@pytest.fixture
def initialized(runner):
    result = runner.invoke(cli, ["init", "--local", "--yes"])
    assert result.exit_code == 0, result.output
    return runner


class TestValueSource:
    """Tests for value input selection."""

    def test_from_option(self):
        assert ValueSource.from_option(None) is ValueSource.PROMPT
        assert ValueSource.from_option("-") is ValueSource.STDIN
        assert ValueSource.from_option("sk-test") is ValueSource.LITERAL


class TestInit:
    """Tests for the init command."""

    def test_init_local(self, runner, project):
        result = runner.invoke(cli, ["init", "--local", "--yes"])
        assert result.exit_code == 0, result.output
        assert "sage1" in result.output
        assert (project / ".secretsage" / "identity.txt").exists()
        assert (project / ".secretsage" / "config.yaml").exists()
        assert ".secretsage/" in (project / ".gitignore").read_text()

    def test_init_global(self, runner, home):
        result = runner.invoke(cli, ["init", "--yes"])
        assert result.exit_code == 0, result.output
        assert (home / ".secretsage" / "identity.txt").exists()

    def test_reinit_declined(self, initialized, project):
        before = (project / ".secretsage" / "identity.txt").read_text()
        result = initialized.invoke(cli, ["init", "--local"], input="n\n")
        assert result.exit_code == 0
        assert "Aborted" in result.output
        assert (project / ".secretsage" / "identity.txt").read_text() == before


class TestCredentialCommands:
    """Tests for add/list/rotate/remove."""

    def test_add_and_list(self, initialized):
        result = initialized.invoke(cli, ["add", "OPENAI_API_KEY", "--value", "sk-test"])
        assert result.exit_code == 0, result.output
        result = initialized.invoke(cli, ["list", "--json"])
        assert orjson.loads(result.output) == ["OPENAI_API_KEY"]

    def test_add_from_stdin(self, initialized, project):
        result = initialized.invoke(cli, ["add", "TOKEN", "--value", "-"], input="from-stdin\n")
        assert result.exit_code == 0, result.output
        initialized.invoke(cli, ["grant", "TOKEN", "--yes"])
        assert parse_env((project / ".env").read_text()) == {"TOKEN": "from-stdin"}

    def test_add_prompts(self, initialized):
        result = initialized.invoke(cli, ["add", "TOKEN"], input="typed\n")
        assert result.exit_code == 0, result.output
        assert "typed" not in result.output.replace("Value for TOKEN", "")

    def test_add_from_env(self, initialized, project):
        (project / ".env").write_text("EXISTING=abc\n")
        result = initialized.invoke(cli, ["add", "EXISTING", "--from-env"])
        assert result.exit_code == 0, result.output
        result = initialized.invoke(cli, ["list"])
        assert "EXISTING" in result.output

    def test_list_all_json_has_metadata(self, initialized):
        initialized.invoke(cli, ["add", "TOKEN", "--value", "v", "--description", "ci", "--tag", "prod"])
        result = initialized.invoke(cli, ["list", "--json", "--all"])
        records = orjson.loads(result.output)
        assert records[0]["name"] == "TOKEN"
        assert records[0]["description"] == "ci"
        assert records[0]["tags"] == ["prod"]
        assert "createdAt" in records[0]

    def test_rotate_missing_fails(self, initialized):
        result = initialized.invoke(cli, ["rotate", "NOPE", "--value", "x", "--yes"])
        assert result.exit_code == 1
        assert "NOPE" in result.output

    def test_rotate_and_remove(self, initialized):
        initialized.invoke(cli, ["add", "TOKEN", "--value", "v1"])
        result = initialized.invoke(cli, ["rotate", "TOKEN", "--value", "v2", "--yes"])
        assert result.exit_code == 0, result.output
        result = initialized.invoke(cli, ["remove", "TOKEN", "--yes"])
        assert result.exit_code == 0, result.output
        result = initialized.invoke(cli, ["list", "--json"])
        assert orjson.loads(result.output) == []

    def test_no_vault_is_an_error(self, runner):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 1
        assert "secretsage init" in result.output


class TestGrantRevoke:
    """Tests for grant/revoke commands."""

    def test_grant_and_revoke(self, initialized, project):
        initialized.invoke(cli, ["add", "OPENAI_API_KEY", "--value", "sk-test"])
        result = initialized.invoke(cli, ["grant", "OPENAI_API_KEY", "--yes"])
        assert result.exit_code == 0, result.output
        assert (project / ".env").read_text() == "OPENAI_API_KEY=sk-test\n"

        result = initialized.invoke(cli, ["revoke", "--all", "--yes"])
        assert result.exit_code == 0, result.output
        assert (project / ".env").read_text() == ""

    def test_grant_unknown_name_fails(self, initialized, project):
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        result = initialized.invoke(cli, ["grant", "A", "B", "--yes"])
        assert result.exit_code == 1
        assert "B" in result.output
        assert not (project / ".env").exists()

    def test_grant_confirmation_declined(self, initialized, project):
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        result = initialized.invoke(cli, ["grant", "A"], input="n\n")
        assert "Aborted" in result.output
        assert not (project / ".env").exists()

    def test_undecodable_env_fails_cleanly(self, initialized, project):
        (project / ".env").write_bytes(b"FOO=caf\xe9\n")
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        for args in (["grant", "A", "--yes"], ["revoke", "FOO", "--yes"]):
            result = initialized.invoke(cli, args)
            assert result.exit_code == 1
            assert "not valid UTF-8" in result.output
            assert not isinstance(result.exception, UnicodeDecodeError)
        assert (project / ".env").read_bytes() == b"FOO=caf\xe9\n"

    def test_revoke_keeps_unrelated_keys(self, initialized, project):
        (project / ".env").write_text("FOO=bar\n")
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        initialized.invoke(cli, ["grant", "A", "--yes", "--no-backup"])
        result = initialized.invoke(cli, ["revoke", "--yes"])
        assert result.exit_code == 0, result.output
        assert (project / ".env").read_text() == "FOO=bar\n"


class TestStatusExportImport:
    """Tests for status/export/import/config."""

    def test_status_json(self, initialized, project):
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        initialized.invoke(cli, ["add", "B", "--value", "2"])
        initialized.invoke(cli, ["grant", "A", "--yes"])
        result = initialized.invoke(cli, ["status", "--json"])
        status = orjson.loads(result.output)
        assert status["vault"]["type"] == "local"
        assert status["credentials"] == {"stored": 2, "granted": 1, "available": 1}
        assert status["env"]["exists"] is True

    def test_status_without_vault(self, runner):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "not initialized" in result.output

    def test_export_and_import(self, initialized, project, tmp_path):
        initialized.invoke(cli, ["add", "A", "--value", "with space"])
        export_file = tmp_path / "export.json"
        result = initialized.invoke(cli, ["export", "--output", str(export_file)])
        assert result.exit_code == 0, result.output
        items = orjson.loads(export_file.read_bytes())
        assert items[0]["name"] == "A"
        assert items[0]["value"] == "with space"

        initialized.invoke(cli, ["remove", "A", "--yes"])
        result = initialized.invoke(cli, ["import", "--input", str(export_file), "--yes"])
        assert result.exit_code == 0, result.output
        assert "1 new" in result.output

    def test_export_env_format(self, initialized, tmp_path):
        initialized.invoke(cli, ["add", "A", "--value", "1"])
        out = tmp_path / "export.env"
        initialized.invoke(cli, ["export", "--format", "env", "--output", str(out)])
        assert parse_env(out.read_text()) == {"A": "1"}

    def test_export_encrypted(self, initialized, tmp_path):
        initialized.invoke(cli, ["add", "A", "--value", "plain-marker"])
        out = tmp_path / "vault-backup.json"
        initialized.invoke(cli, ["export", "--encrypted", "--output", str(out)])
        assert "plain-marker" not in out.read_text()
        assert "encryptedValue" in out.read_text()

    def test_import_env_from_stdin(self, initialized):
        result = initialized.invoke(
            cli, ["import", "--format", "env", "--yes"], input="X=1\nY=2\n",
        )
        assert result.exit_code == 0, result.output
        result = initialized.invoke(cli, ["list", "--json"])
        assert orjson.loads(result.output) == ["X", "Y"]

    def test_import_rejects_non_list_json(self, initialized):
        result = initialized.invoke(cli, ["import", "--yes"], input='{"name": "A"}')
        assert result.exit_code == 1

    def test_config_set_and_show(self, initialized, project):
        result = initialized.invoke(cli, ["config", "--set", "agent.backupEnvOnGrant=false"])
        assert result.exit_code == 0, result.output
        assert "backupEnvOnGrant: false" in (project / ".secretsage" / "config.yaml").read_text()
        result = initialized.invoke(cli, ["config", "--show"])
        assert "backupEnvOnGrant: false" in result.output

    def test_config_unknown_key(self, initialized):
        result = initialized.invoke(cli, ["config", "--set", "nope=1"])
        assert result.exit_code == 1

    def test_config_path(self, initialized, project):
        result = initialized.invoke(cli, ["config", "--path"])
        assert result.output.strip() == str(project / ".secretsage" / "config.yaml")
