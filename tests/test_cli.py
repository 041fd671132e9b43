import json

import pytest

from parcel_discovery.__main__ import build_parser, main


def _summary(out):
    lines = [json.loads(line) for line in out.splitlines() if line.startswith("{")]
    return [p for p in lines if "outcome" in p][-1], [p for p in lines if "logger" in p]


def test_demo_postal_search(capsys):
    code = main(["--postal", "10019", "--demo"])
    summary, _ = _summary(capsys.readouterr().out)
    assert code == 0
    assert summary["outcome"]["status"] == "ok"
    assert summary["outcome"]["count"] == 5
    assert len(summary["results"]) == 5
    assert summary["markers"] == 5
    assert summary["filtered_count"] == 5
    assert summary["selected"] is None


def test_demo_select_first_enriches(capsys):
    code = main(["--postal", "10019", "--demo", "--select", "first"])
    summary, _ = _summary(capsys.readouterr().out)
    assert code == 0
    assert summary["selected"]["identity"] == summary["results"][0]["identity"]
    assert summary["selected"]["completeness"] == "detailed"
    assert summary["enrichment"]["partial"] is False


def test_demo_is_deterministic(capsys):
    main(["--postal", "33101", "--demo"])
    first, _ = _summary(capsys.readouterr().out)
    main(["--postal", "33101", "--demo"])
    second, _ = _summary(capsys.readouterr().out)
    assert first["results"] == second["results"]


def test_demo_address_search(capsys):
    code = main(["--address", "12 Elm St", "Springfield, NY 12345", "--demo"])
    summary, _ = _summary(capsys.readouterr().out)
    assert code == 0
    assert summary["outcome"]["query"] == "12 Elm St, Springfield, NY 12345"
    assert summary["results"][0]["address"]["line1"] == "12 Elm St"


def test_demo_non_numeric_postal_is_not_found(capsys):
    code = main(["--postal", "ABCDE", "--demo"])
    summary, _ = _summary(capsys.readouterr().out)
    assert code == 0
    assert summary["outcome"]["status"] == "not_found"
    assert summary["results"] == []


def test_demo_click(capsys):
    code = main(["--click", "40.7651", "-73.9851", "--demo"])
    summary, _ = _summary(capsys.readouterr().out)
    assert code == 0
    assert summary["outcome"]["status"] in ("ok", "no_address_at_point")
    assert summary["results"] == []
    assert summary["markers"] == 1


def test_unknown_select_is_usage_error(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--postal", "10019", "--demo", "--select", "nope"])
    assert exc.value.code == 2
    assert "unknown property" in capsys.readouterr().err


def test_search_target_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--demo"])


def test_json_logs_do_not_leak_query_text(capsys):
    code = main(
        ["--address", "77 SecretQuery Way", "--demo", "--log-json", "--log-level", "INFO"]
    )
    _, logs = _summary(capsys.readouterr().out)
    assert code == 0
    assert any(p["logger"] == "parcel_discovery.engine" for p in logs)
    assert logs
    assert all("SecretQuery" not in json.dumps(p) for p in logs)
