#!/usr/bin/env python3
"""
Input and output nodes.

Sources hold media or text loaded by the user; the output node collects the
final media of a workflow.
"""
from typing import Any, Dict

from mediaflow.errors import NodeOperationError
from mediaflow.nodes.base import InputPort, OutputPort, PortKind
from mediaflow.nodes.registry import register_node


@register_node(
    "imageInput",
    outputs=[
        OutputPort("image", PortKind.IMAGE, "image", description="Loaded image"),
    ],
    defaults={"image": None, "filename": None, "dimensions": None},
    metadata={"category": "input", "title": "Image Input", "description": "Load an image file"},
)
def image_input(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Publish the loaded image"""
    if not config.get("image"):
        raise NodeOperationError("No image loaded")
    return {"image": config["image"]}


@register_node(
    "videoInput",
    outputs=[
        OutputPort("video", PortKind.VIDEO, "video", description="Loaded video"),
        OutputPort("image", PortKind.IMAGE, "lastFrame", description="Last frame of the video"),
    ],
    defaults={"video": None, "filename": None, "duration": None, "lastFrame": None},
    metadata={"category": "input", "title": "Video Input", "description": "Load a video file"},
)
def video_input(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Publish the loaded video and its last frame"""
    if not config.get("video"):
        raise NodeOperationError("No video loaded")
    return {"video": config["video"], "image": config.get("lastFrame")}


@register_node(
    "prompt",
    outputs=[
        OutputPort("text", PortKind.TEXT, "prompt", description="Prompt text"),
    ],
    defaults={"prompt": ""},
    metadata={"category": "input", "title": "Prompt", "description": "Free-form text prompt"},
)
def prompt(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Publish the prompt text"""
    text = (config.get("prompt") or "").strip()
    if not text:
        raise NodeOperationError("Prompt is empty")
    return {"text": config["prompt"]}


@register_node(
    "output",
    inputs=[
        InputPort("image", PortKind.IMAGE, multiple=False, description="Final image"),
        InputPort("video", PortKind.VIDEO, description="Final video"),
        InputPort("audio", PortKind.AUDIO, description="Final audio"),
    ],
    defaults={"image": None, "video": None, "audio": None},
    metadata={"category": "output", "title": "Output", "description": "Display the workflow result"},
)
def output(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy connected media into the node"""
    return {
        "image": inputs.get("image"),
        "video": inputs.get("video"),
        "audio": inputs.get("audio"),
    }
