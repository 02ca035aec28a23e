#!/usr/bin/env python3
"""
Video processing nodes.

Wraps the generation service's audio cleanup, captioning, trimming,
upscaling, stitching and compositing routes as nodes.
"""
from typing import Any, Dict, List

from mediaflow.errors import NodeOperationError
from mediaflow.nodes.base import InputPort, OutputPort, PortKind
from mediaflow.nodes.registry import register_node
from mediaflow.utils.service_client import get_service_client

UPSCALE_RESOLUTIONS = ("1080p", "1440p", "4k")

NOISE_REDUCTION_LEVELS = ("light", "medium", "heavy")

DEFAULT_CAPTION_STYLE = {
    "preset": "capcut",
    "fontFamily": "Montserrat",
    "fontSize": 64,
    "fontColor": "#FFFF00",
    "strokeColor": "#FF1493",
    "strokeWidth": 4,
    "position": "bottom",
    "wordsPerLine": 3,
}


def _video_output(description: str) -> List[OutputPort]:
    return [OutputPort("video", PortKind.VIDEO, "outputVideo", description=description)]


def _video_input(description: str = "Source video") -> List[InputPort]:
    return [InputPort("video", PortKind.VIDEO, required=True, description=description)]


def _require_video(inputs: Dict[str, Any]) -> Any:
    video = inputs.get("video")
    if not video:
        raise NodeOperationError("No video provided")
    return video


@register_node(
    "audioProcess",
    inputs=_video_input(),
    outputs=_video_output("Video with cleaned audio"),
    defaults={"method": "elevenlabs", "noiseReduction": "medium", "inputVideo": None, "outputVideo": None},
    metadata={"category": "audio", "title": "Audio Cleanup",
              "description": "Isolate voice (AI) or reduce background noise (FFmpeg)"},
)
async def audio_process(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    video = _require_video(inputs)
    client = get_service_client()

    if (config.get("method") or "elevenlabs") == "elevenlabs":
        result = await client.call("audio-isolate", {"video": video})
    else:
        noise_reduction = config.get("noiseReduction") or "medium"
        if noise_reduction not in NOISE_REDUCTION_LEVELS:
            raise NodeOperationError(f"Unknown noise reduction level: {noise_reduction}")
        result = await client.call("audio-denoise", {"video": video, "noiseReduction": noise_reduction})

    return {"video": result.get("video"), "inputVideo": video}


@register_node(
    "caption",
    inputs=_video_input(),
    outputs=_video_output("Video with burned-in captions"),
    defaults={"style": dict(DEFAULT_CAPTION_STYLE), "transcription": None, "inputVideo": None, "outputVideo": None},
    metadata={"category": "video", "title": "Captions", "description": "Transcribe speech and burn in word captions"},
)
async def caption(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Transcribe (unless a transcript is already stored) then burn captions"""
    video = _require_video(inputs)
    client = get_service_client()

    words = config.get("transcription")
    if not words:
        transcript = await client.call("transcribe", {"video": video})
        words = transcript.get("words") or []
    if not words:
        raise NodeOperationError("No caption words provided")

    style = dict(DEFAULT_CAPTION_STYLE)
    style.update(config.get("style") or {})
    result = await client.call("caption-burn", {"video": video, "words": words, "style": style})

    return {"video": result.get("video"), "transcription": words, "inputVideo": video}


def _require_end_time(node_id: str, data: Dict[str, Any], connected: Dict[str, bool]) -> List[str]:
    end_time = data.get("endTime")
    if isinstance(end_time, bool) or not isinstance(end_time, (int, float)) or end_time <= 0:
        return [f'Trim node "{node_id}" needs a positive end time']
    return []


@register_node(
    "videoTrim",
    inputs=_video_input(),
    outputs=_video_output("Trimmed video"),
    defaults={"endTime": None, "duration": None, "originalDuration": None, "inputVideo": None, "outputVideo": None},
    validator=_require_end_time,
    metadata={"category": "video", "title": "Trim", "description": "Cut a video at an end time"},
)
async def video_trim(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    video = _require_video(inputs)
    result = await get_service_client().call("video-trim", {"video": video, "endTime": config.get("endTime")})
    return {
        "video": result.get("video"),
        "duration": result.get("duration"),
        "originalDuration": result.get("originalDuration"),
        "inputVideo": video,
    }


def _require_resolution(node_id: str, data: Dict[str, Any], connected: Dict[str, bool]) -> List[str]:
    if data.get("targetResolution") not in UPSCALE_RESOLUTIONS:
        return [f'Upscale node "{node_id}" needs a target resolution ({", ".join(UPSCALE_RESOLUTIONS)})']
    return []


@register_node(
    "videoUpscale",
    inputs=_video_input(),
    outputs=_video_output("Upscaled video"),
    defaults={
        "targetResolution": "1080p",
        "sharpen": True,
        "originalResolution": None,
        "newResolution": None,
        "inputVideo": None,
        "outputVideo": None,
    },
    validator=_require_resolution,
    metadata={"category": "video", "title": "Upscale", "description": "Upscale a video to 1080p, 1440p or 4K"},
)
async def video_upscale(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    video = _require_video(inputs)
    result = await get_service_client().call("video-upscale", {
        "video": video,
        "targetResolution": config.get("targetResolution"),
        "sharpen": bool(config.get("sharpen")),
    })
    return {
        "video": result.get("video"),
        "originalResolution": result.get("originalResolution"),
        "newResolution": result.get("newResolution"),
        "inputVideo": video,
    }


@register_node(
    "videoStitch",
    inputs=[InputPort("video", PortKind.VIDEO, required=True, multiple=True, description="Clips, in connection order")],
    outputs=_video_output("Concatenated video"),
    defaults={"inputVideos": [], "outputVideo": None},
    metadata={"category": "video", "title": "Stitch", "description": "Concatenate clips into one video"},
)
async def video_stitch(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    videos = list(inputs.get("video") or [])
    if not videos:
        raise NodeOperationError("No videos provided")
    result = await get_service_client().call("video-stitch", {"videos": videos})
    return {"video": result.get("video"), "inputVideos": videos}


@register_node(
    "videoComposer",
    inputs=[
        InputPort("text", PortKind.TEXT, manual_field="inputCode", description="Composition code"),
        InputPort("video", PortKind.VIDEO, multiple=True, description="Video layers"),
        InputPort("image", PortKind.IMAGE, description="Image layers"),
    ],
    outputs=_video_output("Rendered composition"),
    defaults={
        "inputCode": "",
        "inputVideos": [],
        "inputImages": [],
        "duration": 10,
        "aspectRatio": "16:9",
        "fps": 30,
        "outputVideo": None,
    },
    metadata={"category": "video", "title": "Composer", "description": "Render videos and images into a composition"},
)
async def video_composer(inputs: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    videos = list(inputs.get("video") or [])
    images = list(inputs.get("image") or [])
    if not videos and not images:
        raise NodeOperationError("Nothing to compose")

    result = await get_service_client().call("video-composer", {
        "code": inputs.get("text"),
        "videos": videos,
        "images": images,
        "duration": config.get("duration"),
        "aspectRatio": config.get("aspectRatio"),
        "fps": config.get("fps"),
    })
    return {"video": result.get("video"), "inputVideos": videos, "inputImages": images}
