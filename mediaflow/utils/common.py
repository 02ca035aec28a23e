#!/usr/bin/env python3
"""
Common utilities for mediaflow commands.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def normalize_path(path: Union[str, Path]) -> Path:
    """Normalize a user-supplied path (quotes and escaped spaces from a pasted path are removed)"""
    if isinstance(path, str):
        path = path.strip().replace('\\ ', ' ')
        if len(path) >= 2 and path[0] == path[-1] and path[0] in ('"', "'"):
            path = path[1:-1]
    return Path(path).expanduser().resolve()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to HH:MM:SS.mmm"""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


def summarize_value(value: Any, limit: int = 60) -> str:
    """Short printable form of a port value (data URLs are truncated)"""
    if isinstance(value, list):
        return "[" + ", ".join(summarize_value(v, limit) for v in value) + "]"
    text = str(value)
    if text.startswith("data:") and "," in text:
        header = text.split(",", 1)[0]
        return f"<{header}, {len(text)} chars>"
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text


def print_section(title: str, width: int = 60):
    """Print a section header framed by rules"""
    rule = "=" * width
    print(f"\n{rule}\n{title}\n{rule}" if title else f"\n{rule}")


def save_json(data: Any, path: Path, indent: int = 2):
    """Write JSON via a temporary file so a failed write keeps the old file"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        os.unlink(tmp_name)
        raise


def load_json(path: Path) -> Any:
    """Load JSON file"""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)
