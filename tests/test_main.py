"""Tests for the warden command-line entry point."""

import json
from unittest.mock import patch

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage, messages_to_dict


def _transcript():
    messages = [HumanMessage(content="build it")]
    for i in range(3):
        messages += [
            AIMessage(content=f"attempt {i}"),
            ToolMessage(content="bash: make: command not found", name="shell", status="error", tool_call_id=f"c{i}"),
        ]
    return messages


def test_check_prints_decision_and_analysis(tmp_path, monkeypatch, capsys):
    from warden.main import main

    monkeypatch.chdir(tmp_path)
    path = tmp_path / "transcript.json"
    path.write_text(json.dumps(messages_to_dict(_transcript())))

    assert main(["check", str(path)]) == 0
    out = capsys.readouterr().out
    assert "Tool groups: 3" in out
    assert "Stuck: True" in out
    assert "Decision: needs_smart_recovery" in out
    assert "**COMMAND NOT FOUND**: 3 occurrences" in out


def test_check_accepts_wrapped_payload(tmp_path, monkeypatch, capsys):
    from warden.main import main

    monkeypatch.chdir(tmp_path)
    path = tmp_path / "transcript.json"
    path.write_text(json.dumps({"messages": messages_to_dict(_transcript()[:3])}))

    assert main(["check", str(path)]) == 0
    assert "Decision: normal" in capsys.readouterr().out


def test_audit_prints_report(tmp_path, monkeypatch, capsys):
    from warden.core.report import synthesize_report
    from warden.core.state import AuditState
    from warden.main import main

    monkeypatch.chdir(tmp_path)
    final = AuditState(security_report=synthesize_report("1. You should pin versions"))
    with patch("warden.core.orchestrator.run_audit", return_value=final) as run:
        assert main(["audit", str(tmp_path), "--base", "develop", "--json"]) == 0

    run.assert_called_once_with(repo_root=str(tmp_path), thread_id=None, base_branch="develop")
    payload = json.loads(capsys.readouterr().out)
    assert payload["overall_risk"] == "low"
    assert payload["recommendations"] == ["You should pin versions"]
