"""
Integration tests for the command line interface.
"""

import pytest
import json

from checkpoint_cms.cli import build_parser, main_async


@pytest.fixture
def cli_args(temp_dir):
    """Global options pointing the CLI at a scratch database."""
    config = temp_dir / "cli.yaml"
    config.write_text("logging:\n  enable_console: false\n  level: DEBUG\n")
    return [
        "--config", str(config),
        "--db", str(temp_dir / "cli.db"),
        "--log-dir", str(temp_dir / "logs"),
    ]


async def run(capsys, *argv):
    code = await main_async(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestCLI:
    """Test CLI commands end to end."""

    def test_parser(self):
        args = build_parser().parse_args(["set", "about", "text", "hero", "Hi", "-m", "Edit"])

        assert args.command == "set"
        assert (args.context, args.kind, args.id, args.value) == ("about", "text", "hero", "Hi")
        assert args.description == "Edit"
        assert not args.create

    @pytest.mark.asyncio
    async def test_edit_show_and_restore(self, capsys, cli_args):
        code, out, _ = await run(capsys, *cli_args, "set", "about", "text", "hero", "Hi", "-m", "First")
        assert code == 0
        assert json.loads(out)["version_number"] == 1

        code, out, _ = await run(capsys, *cli_args, "set", "about", "text", "hero", "Hello")
        assert json.loads(out)["version_number"] == 2

        code, out, _ = await run(capsys, *cli_args, "show", "about")
        assert json.loads(out)["content"] == {"text": {"hero": "Hello"}}

        code, out, _ = await run(capsys, *cli_args, "versions", "about", "--limit", "1")
        versions = json.loads(out)
        assert [v["number"] for v in versions] == [2]

        code, out, _ = await run(capsys, *cli_args, "restore", "about", "2")
        assert code == 0
        assert json.loads(out)["elements_restored"] == 1

        code, out, _ = await run(capsys, *cli_args, "show", "about")
        assert json.loads(out)["content"] == {"text": {"hero": "Hi"}}

    @pytest.mark.asyncio
    async def test_records_and_delete(self, capsys, cli_args):
        code, out, _ = await run(
            capsys, *cli_args, "set", "about", "listing", "draft", '{"title": "Loft"}', "--create"
        )
        assert code == 0
        assigned = json.loads(out)["statuses"][0]["assigned_id"]

        code, out, _ = await run(capsys, *cli_args, "delete", "about", "listing", assigned)
        assert code == 0

        code, out, _ = await run(capsys, *cli_args, "show", "about")
        assert json.loads(out)["content"] == {}

    @pytest.mark.asyncio
    async def test_update_of_missing_record_leaves_no_version(self, capsys, cli_args):
        code, _, err = await run(capsys, *cli_args, "set", "about", "team_member", "7", '{"name": "Ann"}')
        assert code == 1
        assert json.loads(err)["error"]["code"] == "VALIDATION_ERROR"

        code, out, _ = await run(capsys, *cli_args, "versions", "about")
        assert json.loads(out) == []

    @pytest.mark.asyncio
    async def test_author_is_recorded(self, capsys, cli_args):
        code, out, _ = await run(capsys, *cli_args, "set", "about", "text", "hero", "Hi", "--author", "ann")
        assert code == 0

        code, out, _ = await run(capsys, *cli_args, "versions", "about")
        assert [v["created_by"] for v in json.loads(out)] == ["ann"]

    @pytest.mark.asyncio
    async def test_init_and_clear(self, capsys, cli_args):
        code, out, _ = await run(capsys, *cli_args, "init", "about")
        assert json.loads(out) == {"context": "about", "baseline_created": True}

        code, _, err = await run(capsys, *cli_args, "clear", "about")
        assert code == 1
        assert json.loads(err)["error"]["code"] == "CHECKPOINT_CMS_ERROR"

        code, out, _ = await run(capsys, *cli_args, "clear", "about", "--yes")
        assert json.loads(out) == {"context": "about", "deleted_count": 1}

    @pytest.mark.asyncio
    async def test_errors_are_reported_as_json(self, capsys, cli_args):
        code, _, err = await run(capsys, *cli_args, "restore", "about", "3")
        assert code == 1
        assert json.loads(err)["error"]["code"] == "NOT_FOUND"

        code, _, err = await run(capsys, *cli_args, "set", "about", "team_member", "7", "not json")
        assert code == 1
        assert "JSON" in json.loads(err)["error"]["message"]

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, capsys, temp_dir):
        config = temp_dir / "bad.yaml"
        config.write_text("versioning:\n  max_versions: 0\n")

        code, _, err = await run(capsys, "--config", str(config), "show", "about")

        assert code == 2
        assert json.loads(err)["error"]["code"] == "CONFIG_ERROR"

    @pytest.mark.asyncio
    async def test_no_command(self, capsys):
        code, out, _ = await run(capsys)
        assert code == 1
        assert "usage" in out
