import json
from unittest.mock import patch

import pytest

from overseer.ingestion import cli
from overseer.ingestion.config import GitHubConfig, GraphConfig, IngestionConfig, ScanConfig


@pytest.fixture
def run(client, graph, github_config):
    config = IngestionConfig(
        github=github_config,
        graph=GraphConfig(url="postgresql://x"),
        scan=ScanConfig(max_repos=10, max_teams=10, ownership_workers=2),
    )

    def invoke(*argv):
        with patch.object(cli, "_load", return_value=config), \
                patch.object(cli, "configure_logging"), \
                patch.object(cli, "create_graph_service", return_value=graph), \
                patch.object(cli, "GitHubClient", return_value=client):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(list(argv))
        return exc_info.value.code

    return invoke


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_parser_scan_options():
    args = cli.build_parser().parse_args(["scan", "acme", "--max-repos", "5", "--use-topics"])
    assert args.organization == "acme"
    assert args.max_repos == 5
    assert args.max_teams is None
    assert args.use_topics is True
    assert args.func is cli.cmd_scan


def test_parser_migrate_down_target():
    args = cli.build_parser().parse_args(["migrate", "down", "--target", "1"])
    assert (args.direction, args.target) == ("down", 1)


def test_scan_then_stats(run, capsys, graph):
    assert run("scan", "acme") == 0
    scan = json.loads(capsys.readouterr().out)
    assert scan["success"] is True
    assert scan["summary"]["total_repos"] == 2
    assert graph.connected is False

    assert run("stats", "acme") == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["codeowner_coverage"] == "50%"


def test_scan_output_file(run, tmp_path, capsys):
    out = tmp_path / "acme.json"
    assert run("scan", "acme", "-o", str(out)) == 0
    assert capsys.readouterr().out == ""
    assert json.loads(out.read_text())["organization"] == "acme"


def test_failed_scan_exits_non_zero(run, capsys):
    assert run("scan", "ghost") == 1
    assert json.loads(capsys.readouterr().out)["errors"][0]["code"] == "NOT_FOUND"


def test_unknown_org_stats_reports_error(run, capsys):
    assert run("stats", "ghost") == 1
    err = json.loads(capsys.readouterr().err)
    assert err["errors"][0]["code"] == "NOT_FOUND"


def test_owner_lookups(run, capsys):
    run("scan", "acme")
    capsys.readouterr()
    assert run("owned-by", "@acme/platform") == 0
    assert [r["repository"] for r in json.loads(capsys.readouterr().out)] == ["acme/api"]
    assert run("owners", "acme/api") == 0
    assert len(json.loads(capsys.readouterr().out)) == 3


def test_migrate_up_and_status(run, capsys):
    assert run("migrate", "up") == 0
    assert json.loads(capsys.readouterr().out) == {"applied": [1, 2, 3], "current_version": 3}
    assert run("migrate", "status") == 0
    assert json.loads(capsys.readouterr().out)["pending"] == []


def test_clear_requires_confirmation(run, graph, capsys):
    run("scan", "acme")
    assert run("clear") == 2
    assert graph.nodes
    assert run("clear", "--yes") == 0
    assert graph.nodes == {}


def test_health(run, capsys):
    assert run("health") == 0
    assert json.loads(capsys.readouterr().out)["status"] == "healthy"
