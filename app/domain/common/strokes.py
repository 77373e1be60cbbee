from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, List, Tuple

from app.store.models import StrokeStore

PATH_RE = re.compile(r"^M[0-9.,\-\sLQ]+$")
MAX_PATH_LEN = 20000
MAX_STROKE_WIDTH = 100


def is_clear(stroke_data: Dict[str, Any]) -> bool:
    return isinstance(stroke_data, dict) and stroke_data.get("clear") is True


def validate_stroke(stroke_data: Dict[str, Any]) -> Tuple[bool, str, str]:
    """
    Validate a stroke payload.
    Returns (ok, err_code, err_message).
    """
    if not isinstance(stroke_data, dict):
        return False, "INVALID_STROKE", "Stroke must be an object"

    if is_clear(stroke_data):
        return True, "", ""

    path = stroke_data.get("path")
    if not isinstance(path, str) or not path:
        return False, "INVALID_PATH", "Stroke requires a 'path' string"
    if len(path) > MAX_PATH_LEN:
        return False, "INVALID_PATH", "Stroke path too long"
    if "NaN" in path or "Infinity" in path or not PATH_RE.match(path):
        return False, "INVALID_PATH", "Stroke path has invalid characters"

    color = stroke_data.get("color")
    if not isinstance(color, str) or not color.strip():
        return False, "INVALID_COLOR", "Stroke requires a 'color' string"

    width = stroke_data.get("strokeWidth")
    if isinstance(width, bool) or not isinstance(width, (int, float)) or not math.isfinite(width):
        return False, "INVALID_WIDTH", "Stroke requires a numeric 'strokeWidth'"
    if width <= 0 or width > MAX_STROKE_WIDTH:
        return False, "INVALID_WIDTH", f"strokeWidth must be in (0, {MAX_STROKE_WIDTH}]"

    return True, "", ""


def replay_strokes(strokes: Iterable[StrokeStore]) -> List[StrokeStore]:
    """
    Rebuild what a spectator canvas shows from a (possibly duplicated or
    reordered) stroke event stream: a clear wipes the canvas and resets the
    index cursor, otherwise any index at or below the last one seen is stale.
    """
    canvas: List[StrokeStore] = []
    last = -1
    for s in strokes:
        if s.is_clear:
            canvas = []
            last = -1
            continue
        if s.stroke_index <= last:
            continue
        last = s.stroke_index
        canvas.append(s)
    return canvas
