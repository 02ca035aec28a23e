#!/usr/bin/env python3
"""
Generation nodes.

Wraps the generation service's text, image, video, speech and music routes
as nodes.
"""
from typing import Any, Dict, List

from mediaflow.errors import NodeOperationError
from mediaflow.nodes.base import InputPort, OutputPort, PortKind
from mediaflow.nodes.registry import register_node
from mediaflow.utils.service_client import get_service_client


def _is_image(value: Any) -> bool:
    if isinstance(value, list):
        return bool(value)
    return isinstance(value, str) and value.startswith("data:image/")


def _require_text_or_context(node_id: str, data: Dict[str, Any], connected: Dict[str, bool]) -> List[str]:
    if connected.get("text") or connected.get("context"):
        return []
    return [f'LLM node "{node_id}" missing text or context input']


@register_node(
    "llmGenerate",
    inputs=[
        InputPort("image", PortKind.IMAGE, description="Optional multimodal context images"),
        InputPort("text", PortKind.TEXT, description="Instruction"),
        InputPort("context", PortKind.CONTEXT, description="Content the instruction applies to"),
    ],
    outputs=[
        OutputPort("text", PortKind.TEXT, "outputText", description="Generated text"),
        OutputPort("image", PortKind.IMAGE, "outputImages", description="Connected images, passed through"),
    ],
    defaults={
        "inputPrompt": None,
        "inputContext": None,
        "inputImages": [],
        "outputText": None,
        "outputImages": [],
        "provider": "google",
        "model": "gemini-3-flash",
        "temperature": 0.7,
        "maxTokens": 1024,
        "useGoogleSearch": True,
    },
    validator=_require_text_or_context,
    metadata={"category": "generate", "title": "LLM", "description": "Generate text with a language model"},
)
async def llm_generate(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Generate text from an instruction and optional context"""
    images = list(inputs.get("image") or [])
    text = inputs.get("text")
    context = inputs.get("context")

    # An image wired into context is multimodal context, not prompt text
    if _is_image(context):
        images.extend(context if isinstance(context, list) else [context])
        context = None

    if not text and not context:
        raise NodeOperationError("Missing text or context input")

    if text and context:
        combined_prompt = f"{text}\n\n---\n\n{context}"
    else:
        combined_prompt = text or context

    result = await get_service_client().call("llm", {
        "prompt": combined_prompt,
        "images": images,
        "provider": config.get("provider"),
        "model": config.get("model"),
        "temperature": config.get("temperature"),
        "maxTokens": config.get("maxTokens"),
        "useGoogleSearch": bool(config.get("useGoogleSearch")),
    })
    if not result.get("text"):
        raise NodeOperationError(result.get("error") or "LLM generation failed")

    return {
        "text": result["text"],
        "image": images,
        "inputPrompt": text,
        "inputContext": context,
        "inputImages": images,
    }


@register_node(
    "imageGenerate",
    inputs=[
        InputPort("image", PortKind.IMAGE, description="Images to edit or combine"),
        InputPort("reference", PortKind.REFERENCE, description="Style or identity references"),
        InputPort("text", PortKind.TEXT, required=True, description="Prompt"),
    ],
    outputs=[
        OutputPort("image", PortKind.IMAGE, "outputImage", description="Generated image"),
    ],
    defaults={
        "inputImages": [],
        "inputPrompt": None,
        "outputImage": None,
        "aspectRatio": "1:1",
        "resolution": "1K",
        "model": "nano-banana-pro",
        "useGoogleSearch": False,
    },
    metadata={"category": "generate", "title": "Generate Image", "description": "Generate or edit an image from a prompt"},
)
async def image_generate(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    images = list(inputs.get("image") or [])
    references = list(inputs.get("reference") or [])
    text = inputs.get("text")
    if not text:
        raise NodeOperationError("Missing text input")

    result = await get_service_client().call("generate", {
        "images": images,
        "referenceImages": references,
        "prompt": text,
        "aspectRatio": config.get("aspectRatio"),
        "resolution": config.get("resolution"),
        "model": config.get("model"),
        "useGoogleSearch": bool(config.get("useGoogleSearch")),
    })
    if not result.get("image"):
        raise NodeOperationError(result.get("error") or "Generation failed")

    return {"image": result["image"], "inputImages": images, "inputPrompt": text}


@register_node(
    "videoGenerate",
    inputs=[
        InputPort("image", PortKind.IMAGE, required=True, multiple=False, description="Start frame"),
        InputPort("text", PortKind.TEXT, required=True, description="Prompt"),
    ],
    outputs=[
        OutputPort("video", PortKind.VIDEO, "outputVideo", description="Generated video"),
        OutputPort("image", PortKind.IMAGE, "lastFrame", description="Last frame, for chaining"),
    ],
    defaults={
        "inputImage": None,
        "inputPrompt": None,
        "outputVideo": None,
        "lastFrame": None,
        "duration": 4,
        "aspectRatio": "16:9",
        "resolution": "720p",
        "model": "veo-3.1-fast",
    },
    metadata={"category": "generate", "title": "Generate Video", "description": "Animate a start frame from a prompt"},
)
async def video_generate(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    image = inputs.get("image")
    text = inputs.get("text")
    if not image or not text:
        raise NodeOperationError("Missing image or prompt input")

    result = await get_service_client().call("video", {
        "prompt": text,
        "image": image,
        "durationSeconds": config.get("duration"),
        "aspectRatio": config.get("aspectRatio"),
        "resolution": config.get("resolution"),
        "model": config.get("model"),
    })
    if not result.get("video"):
        raise NodeOperationError(result.get("error") or "Video generation failed")

    return {
        "video": result["video"],
        "image": result.get("lastFrame"),
        "inputImage": image,
        "inputPrompt": text,
    }


@register_node(
    "speechGenerate",
    inputs=[
        InputPort("text", PortKind.TEXT, required=True, description="Script to speak"),
    ],
    outputs=[
        OutputPort("audio", PortKind.AUDIO, "outputAudio", description="Generated speech"),
    ],
    defaults={"inputText": None, "voiceId": "pNInz6obpg8nEByWQX7X", "outputAudio": None},
    metadata={"category": "generate", "title": "Voice", "description": "Text to speech"},
)
async def speech_generate(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    text = inputs.get("text")
    if not text:
        raise NodeOperationError("Missing script input")

    result = await get_service_client().call("elevenlabs", {
        "text": text,
        "voiceId": config.get("voiceId"),
    })
    if not result.get("audio"):
        raise NodeOperationError(result.get("error") or "Voice generation failed")

    return {"audio": result["audio"], "inputText": text}


@register_node(
    "musicGenerate",
    inputs=[
        InputPort("text", PortKind.TEXT, manual_field="prompt", description="Music description"),
    ],
    outputs=[
        OutputPort("audio", PortKind.AUDIO, "outputAudio", description="Generated music"),
    ],
    defaults={"prompt": "", "duration": 30, "instrumental": True, "outputAudio": None},
    metadata={"category": "generate", "title": "Music", "description": "Generate a music track"},
)
async def music_generate(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    text = inputs.get("text")
    if not text:
        raise NodeOperationError("No prompt provided")

    result = await get_service_client().call("music-generate", {
        "prompt": text,
        "duration": config.get("duration"),
        "instrumental": bool(config.get("instrumental")),
    })
    if not result.get("audio"):
        raise NodeOperationError(result.get("error") or "Music generation failed")

    return {"audio": result["audio"]}
