"""Tests for input resolution across edges."""

import pytest

from mediaflow.engine.data import get_output_value, is_absent
from mediaflow.engine.graph import WorkflowGraph


@pytest.fixture
def graph():
    return WorkflowGraph()


class TestIsAbsent:
    """Tests for what counts as a missing value."""

    @pytest.mark.parametrize("value", [None, "", [], ()])
    def test_absent(self, value):
        assert is_absent(value)

    @pytest.mark.parametrize("value", ["x", ["x"], 0, False, {}])
    def test_present(self, value):
        assert not is_absent(value)


class TestOutputValues:
    """Tests for reading output ports from node data."""

    def test_reads_declared_field(self, graph):
        video = graph.add_node("videoInput", data={"video": "clip.mp4", "lastFrame": "frame.png"})

        assert get_output_value(graph, video, "video") == "clip.mp4"
        assert get_output_value(graph, video, "image") == "frame.png"

    def test_unknown_handle_is_none(self, graph):
        prompt = graph.add_node("prompt", data={"prompt": "hi"})
        assert get_output_value(graph, prompt, "video") is None


class TestCollectingPorts:
    """Tests for ports that gather every connection."""

    def test_images_in_edge_order(self, graph):
        first = graph.add_node("imageInput", data={"image": "a.png"})
        second = graph.add_node("imageInput", data={"image": "b.png"})
        generate = graph.add_node("imageGenerate")
        graph.connect(second, "image", generate, "image")
        graph.connect(first, "image", generate, "image")

        inputs = graph.get_connected_inputs(generate)

        assert inputs["image"] == ["b.png", "a.png"]
        assert inputs["reference"] == []
        assert inputs["text"] is None

    def test_list_outputs_are_flattened(self, graph):
        first = graph.add_node("imageInput", data={"image": "a.png"})
        llm = graph.add_node("llmGenerate", data={"outputImages": ["b.png", "c.png"]})
        generate = graph.add_node("imageGenerate")
        graph.connect(first, "image", generate, "image")
        graph.connect(llm, "image", generate, "image")

        assert graph.get_connected_inputs(generate)["image"] == ["a.png", "b.png", "c.png"]

    def test_absent_values_are_skipped(self, graph):
        loaded = graph.add_node("imageInput", data={"image": "a.png"})
        empty = graph.add_node("imageInput")
        generate = graph.add_node("imageGenerate")
        graph.connect(empty, "image", generate, "image")
        graph.connect(loaded, "image", generate, "image")

        assert graph.get_connected_inputs(generate)["image"] == ["a.png"]

    def test_declared_multiple_video_port(self, graph):
        clips = [graph.add_node("videoInput", data={"video": f"clip{i}.mp4"}) for i in range(3)]
        stitch = graph.add_node("videoStitch")
        for clip in clips:
            graph.connect(clip, "video", stitch, "video")

        assert graph.get_connected_inputs(stitch)["video"] == ["clip0.mp4", "clip1.mp4", "clip2.mp4"]


class TestSinglePorts:
    """Tests for single-valued ports."""

    def test_last_connection_wins(self, graph):
        first = graph.add_node("prompt", data={"prompt": "first"})
        second = graph.add_node("prompt", data={"prompt": "second"})
        speech = graph.add_node("speechGenerate")
        graph.connect(first, "text", speech, "text")
        graph.connect(second, "text", speech, "text")

        assert graph.get_connected_inputs(speech)["text"] == "second"

    def test_absent_last_connection_falls_back(self, graph):
        first = graph.add_node("prompt", data={"prompt": "first"})
        second = graph.add_node("prompt")
        speech = graph.add_node("speechGenerate")
        graph.connect(first, "text", speech, "text")
        graph.connect(second, "text", speech, "text")

        assert graph.get_connected_inputs(speech)["text"] == "first"

    def test_list_on_single_port_takes_first_item(self, graph):
        llm = graph.add_node("llmGenerate", data={"outputImages": ["b.png", "c.png"]})
        out = graph.add_node("output")
        graph.connect(llm, "image", out, "image")

        assert graph.get_connected_inputs(out) == {"image": "b.png", "video": None, "audio": None}

    def test_resolution_reads_current_data(self, graph):
        prompt = graph.add_node("prompt", data={"prompt": "before"})
        speech = graph.add_node("speechGenerate")
        graph.connect(prompt, "text", speech, "text")

        graph.update_node_data(prompt, {"prompt": "after"})

        assert graph.get_connected_inputs(speech)["text"] == "after"


class TestManualFields:
    """Tests for unconnected ports falling back to node data."""

    def test_unconnected_port_uses_manual_field(self, graph):
        music = graph.add_node("musicGenerate", data={"prompt": "lofi"})
        assert graph.get_connected_inputs(music)["text"] == "lofi"

    def test_connection_overrides_manual_field(self, graph):
        prompt = graph.add_node("prompt", data={"prompt": "jazz"})
        music = graph.add_node("musicGenerate", data={"prompt": "lofi"})
        graph.connect(prompt, "text", music, "text")

        assert graph.get_connected_inputs(music)["text"] == "jazz"
