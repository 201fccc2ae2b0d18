"""Reference unit-of-work handlers.

A handler takes the request ``args`` mapping and returns a JSON-serializable
mapping, either directly or as an awaitable. Raising any exception marks the
job failed with ``str(exc)`` as its error description.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import quote


def summarize(args: Mapping[str, Any]) -> dict[str, Any]:
    text = args.get("text")
    if not text or not isinstance(text, str):
        raise ValueError("text is required")

    words = text.split()
    summary_length = min(50, len(words) // 3)
    summary = " ".join(words[:summary_length]) + "..."

    return {
        "summary": summary,
        "original_length": len(text),
        "summary_length": len(summary),
        "tokens_processed": len(words),
    }


def generate_image(args: Mapping[str, Any]) -> dict[str, Any]:
    prompt = args.get("prompt")
    width = args.get("width") or 512
    height = args.get("height") or 512
    if not prompt or not isinstance(prompt, str):
        raise ValueError("prompt is required")

    return {
        "image_url": f"https://via.placeholder.com/{width}x{height}?text={quote(prompt, safe='')}",
        "prompt": prompt,
        "dimensions": {"width": width, "height": height},
        "processing_time_ms": 150,
    }


def translate(args: Mapping[str, Any]) -> dict[str, Any]:
    text = args.get("text")
    source = args.get("from") or "en"
    target = args.get("to") or "es"
    if not text or not isinstance(text, str):
        raise ValueError("text is required")

    return {
        "original": text,
        "translated": f"[{source}→{target}] {text}",
        "from_language": source,
        "to_language": target,
        "characters_processed": len(text),
    }


def compute(args: Mapping[str, Any]) -> dict[str, Any]:
    operation = args.get("operation")
    value = args.get("value")
    if not operation:
        raise ValueError("operation is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("value must be a number")
    if not math.isfinite(value):
        raise ValueError("value must be finite")

    if operation == "square":
        output = value * value
    elif operation == "sqrt":
        if value < 0:
            raise ValueError("sqrt requires a non-negative value")
        output = math.sqrt(value)
    elif operation == "double":
        output = value * 2
    else:
        raise ValueError(f"unknown operation: {operation}")

    return {
        "operation": operation,
        "input": value,
        "output": output,
        "computed_at": datetime.now(timezone.utc).isoformat(),
    }
