from __future__ import annotations

import json

from typer.testing import CliRunner

from conftest import VOTER
from votesync.cli import app
from votesync.db import Database
from votesync.models import Proposal, Vote

runner = CliRunner()


def _seed(path):
    with Database.for_path(path).open() as db, db.session_scope() as session:
        session.add(Proposal(
            id="7", title="Fund the treasury", description="# Fund the treasury",
            proposer_address=VOTER.lower(), created_at=1_700_000_000, block_number=10,
        ))
        session.add(Vote(proposal_id="7", voter_address=VOTER.lower(), support="Yes", stake_amount=12.0))


def _invoke(tmp_path, *args):
    return runner.invoke(app, ["--config", str(tmp_path / "none.yaml"), "--db", str(tmp_path / "cli.db"), *args])


def test_proposals_json(tmp_path):
    _seed(tmp_path / "cli.db")
    result = _invoke(tmp_path, "--json", "proposals")
    assert result.exit_code == 0, result.output
    items = json.loads(result.output)
    assert [p["id"] for p in items] == ["7"]
    assert items[0]["tally"]["Yes"] == 12.0


def test_proposals_table(tmp_path):
    _seed(tmp_path / "cli.db")
    result = _invoke(tmp_path, "proposals")
    assert result.exit_code == 0, result.output
    assert "Proposals (1)" in result.output


def test_status_json_on_fresh_store(tmp_path):
    result = _invoke(tmp_path, "--json", "status")
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["proposals"] == 0
    assert payload["last_run"] is None
