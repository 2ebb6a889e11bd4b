from __future__ import annotations

import colorsys
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from src.client.config import DEFAULT_LOOP_COUNT, clamp_loop_count
from src.client.player import CLIP, SOURCE_NAMES

ISLAND_HUES = (0.03, 0.12, 0.20, 0.33, 0.58, 0.70, 0.80, 0.92)
ISLAND_SATURATION = 0.65
ISLAND_VALUE = 0.85

REVIEW_LABELS = {
    "ok": "OK",
    "needTrim": "Need trim",
    "unsure": "Unsure",
    "mismatch": "Mismatch",
}

DEFAULT_SETTINGS = {
    "project_root": "",
    "movie_path": "",
    "clip_path": "",
    "loop_pair": True,
    "mirror_clip": False,
    "loop_count": DEFAULT_LOOP_COUNT,
    "audio_source": CLIP,
}


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``mm:ss.mmm``."""

    total_ms = max(0, int(round(seconds * 1000)))
    minutes, remainder = divmod(total_ms, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{minutes:02d}:{secs:02d}.{millis:03d}"


def island_color(island_id: int) -> str:
    # 1-based ids; the palette repeats every eight islands
    hue = ISLAND_HUES[max(0, island_id - 1) % len(ISLAND_HUES)]
    red, green, blue = colorsys.hsv_to_rgb(hue, ISLAND_SATURATION, ISLAND_VALUE)
    return "#{:02x}{:02x}{:02x}".format(round(red * 255), round(green * 255), round(blue * 255))


def review_label(status: Optional[str], stale: bool = False) -> str:
    label = REVIEW_LABELS.get(status or "", "")
    if label and stale:
        return f"{label} (stale)"
    return label


def append_jsonl(path: Path, payload: dict, max_lines: int = 2000, background: bool = True) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    def _write() -> None:
        lines: list[str] = []
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as handle:
                    lines = handle.readlines()
            except OSError:
                lines = []
        lines.append(json.dumps(payload, ensure_ascii=False) + "\n")
        if max_lines > 0 and len(lines) > max_lines:
            lines = lines[-max_lines:]
        try:
            with path.open("w", encoding="utf-8") as handle:
                handle.writelines(lines)
        except OSError:
            pass

    if background:
        thread = threading.Thread(target=_write, daemon=True)
        thread.start()
    else:
        _write()


def load_gui_settings(path: Path) -> dict:
    """Stored preferences merged over defaults; unknown or invalid values fall back."""

    settings = dict(DEFAULT_SETTINGS)
    if not path.exists():
        return settings
    try:
        with path.open("r", encoding="utf-8") as handle:
            stored = json.load(handle)
    except (OSError, json.JSONDecodeError):
        return settings
    if not isinstance(stored, dict):
        return settings

    for key in ("project_root", "movie_path", "clip_path"):
        if isinstance(stored.get(key), str):
            settings[key] = stored[key]
    for key in ("loop_pair", "mirror_clip"):
        if isinstance(stored.get(key), bool):
            settings[key] = stored[key]
    try:
        settings["loop_count"] = clamp_loop_count(int(stored.get("loop_count", DEFAULT_LOOP_COUNT)))
    except (TypeError, ValueError):
        settings["loop_count"] = DEFAULT_LOOP_COUNT
    if stored.get("audio_source") in SOURCE_NAMES:
        settings["audio_source"] = stored["audio_source"]
    return settings


def save_gui_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(settings, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)


__all__ = [
    "ISLAND_HUES",
    "DEFAULT_SETTINGS",
    "iso_timestamp",
    "format_timestamp",
    "island_color",
    "review_label",
    "append_jsonl",
    "load_gui_settings",
    "save_gui_settings",
]
