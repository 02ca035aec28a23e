"""Tests for the mediaflow command line."""

import json

import pytest

from mediaflow.workflows.cli import build_parser, main


@pytest.fixture
def prompt_workflow(tmp_path):
    path = tmp_path / "prompt.json"
    path.write_text(json.dumps({
        "version": 1,
        "metadata": {"name": "Prompt only"},
        "nodes": [{"id": "prompt-1", "type": "prompt", "data": {"prompt": "A quiet harbour at dawn"}}],
        "edges": [],
    }))
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_scope_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["execute", "wf.json", "--from", "a", "--only", "b"])

    def test_execute_flags(self):
        args = build_parser().parse_args(["execute", "wf.json", "--only", "llm-1", "--max-concurrency", "2"])
        assert args.only_node == "llm-1"
        assert args.max_concurrency == 2


class TestCommands:
    """Tests for running commands end to end."""

    def test_list_nodes(self, capsys):
        main(["list-nodes"])

        out = capsys.readouterr().out
        assert "GENERATE:" in out
        assert "llmGenerate" in out

    def test_validate_valid(self, prompt_workflow, capsys):
        main(["validate", str(prompt_workflow)])
        assert "Workflow is valid" in capsys.readouterr().out

    def test_validate_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"nodes": [{"id": "llm", "type": "llmGenerate"}]}))

        with pytest.raises(SystemExit) as exc_info:
            main(["validate", str(path)])

        assert exc_info.value.code == 1
        assert 'LLM node "llm" missing text or context input' in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["validate", str(tmp_path / "missing.json")])

    def test_execute_writes_results(self, prompt_workflow, tmp_path, capsys):
        output = tmp_path / "results.json"
        saved = tmp_path / "saved.json"

        main(["execute", str(prompt_workflow), "--output", str(output), "--save", str(saved)])

        assert "State: completed" in capsys.readouterr().out
        results = json.loads(output.read_text())
        assert results["completed"] == ["prompt-1"]
        assert results["nodes"]["prompt-1"]["status"] == "complete"
        assert json.loads(saved.read_text())["metadata"] == {"name": "Prompt only"}

    def test_execute_failure_exits_nonzero(self, tmp_path):
        path = tmp_path / "empty_prompt.json"
        path.write_text(json.dumps({"nodes": [{"id": "p", "type": "prompt"}]}))

        with pytest.raises(SystemExit) as exc_info:
            main(["execute", str(path)])
        assert exc_info.value.code == 1

    def test_config_show(self, config_manager, capsys):
        main(["config", "--show", "--service-url", "http://render-box:3000"])

        out = capsys.readouterr().out
        assert "http://render-box:3000" in out
        assert config_manager.load().service.service_url == "http://render-box:3000"

    def test_execute_stops_at_pause(self, tmp_path, capsys):
        path = tmp_path / "paused.json"
        path.write_text(json.dumps({
            "nodes": [
                {"id": "prompt-1", "type": "prompt", "data": {"prompt": "Summarise"}},
                {"id": "llmGenerate-2", "type": "llmGenerate"},
            ],
            "edges": [{
                "source": "prompt-1", "sourceHandle": "text",
                "target": "llmGenerate-2", "targetHandle": "text",
                "data": {"hasPause": True},
            }],
        }))

        main(["execute", str(path)])

        out = capsys.readouterr().out
        assert "State: paused" in out
        assert "Paused Before: llmGenerate-2" in out
