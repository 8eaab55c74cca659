# tests/test_cli.py

import json

from unittest.mock import patch

from concept_linker.cli import build_arg_parser, main, run
from concept_linker.errors import LLMProviderError


def _run(capsys, *argv):
    args = build_arg_parser().parse_args(list(argv))
    code = run(args)
    return code, capsys.readouterr().out


def test_init_db_and_status(tmp_path, capsys):
    db = str(tmp_path / "cli.db")

    code, out = _run(capsys, "init-db", "--db", db)
    assert code == 0
    tables = json.loads(out)["tables"]
    assert {"concept", "concept_embedding", "llm_cache"} <= set(tables)

    code, out = _run(capsys, "status", "--db", db)
    status = json.loads(out)
    assert status["total"] == 0
    assert status["is_indexing"] is False


def test_cache_maintenance_actions(tmp_path, capsys):
    db = str(tmp_path / "cli.db")

    assert json.loads(_run(capsys, "cache-stats", "--db", db)[1]) == []
    assert json.loads(_run(capsys, "clear-cache", "--db", db, "--provider", "openai")[1]) == {"deleted": 0}
    assert json.loads(_run(capsys, "normalize-vectors", "--db", db)[1]) == {
        "concept_embedding": 0,
        "llm_cache": 0,
    }


def test_propose_requires_concept_id(tmp_path, capsys):
    code, out = _run(capsys, "propose", "--db", str(tmp_path / "cli.db"))
    assert code == 2
    assert out == ""


def test_backfill_uses_configured_client(tmp_path, capsys, fake_llm, add_concept, db_path):
    add_concept("c1", "Machine Learning")

    with patch('concept_linker.cli.LLMClient', return_value=fake_llm) as mock_client:
        code, out = _run(capsys, "backfill", "--db", db_path, "--ai_provider", "openai", "--batch_size", "5")

    assert code == 0
    assert json.loads(out) == {"attempted": 1, "succeeded": 1, "failed": 0}
    assert mock_client.call_args.kwargs["provider"] == "openai"


def test_main_returns_error_code_on_provider_failure(tmp_path, capsys):
    with patch('concept_linker.cli.LLMClient', side_effect=LLMProviderError("no key")):
        code = main(["backfill", "--db", str(tmp_path / "cli.db")])

    assert code == 1
