from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any

from .types import (
    CustomEvent,
    DeadClick,
    ErrorRecord,
    FormStats,
    InteractionStats,
    MouseSample,
    SignalBatch,
)

# Sub-structures that travel as JSON text on the wire.
ENCODED_FIELDS: tuple[str, ...] = (
    "dwell_time",
    "events",
    "interactions",
    "dead_clicks",
    "forms",
    "performance",
    "errors",
    "mouse_trace",
)


class SignalValidationError(ValueError):
    pass


# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold.
MAX_EPOCH_MS = 253_402_300_799_999


def json_dumps(payload: Any) -> str:
    # Stable JSON for deterministic outputs/diffs
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _decoded(raw: Mapping[str, Any], key: str, expected: type) -> Any:
    value = raw.get(key)
    if value is None or value == "":
        return expected()
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise SignalValidationError(f"signals.{key} is not valid JSON") from e
    if not isinstance(value, expected):
        raise SignalValidationError(
            f"signals.{key} must be a {expected.__name__}, got {type(value).__name__}"
        )
    return value


def _number(value: Any, where: str, *, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SignalValidationError(f"{where} must be a number")
    if not math.isfinite(value):
        raise SignalValidationError(f"{where} must be finite")
    if value < minimum:
        raise SignalValidationError(f"{where} must be >= {minimum}")
    return float(value)


def _timestamp(value: Any, where: str) -> int:
    ms = _number(value, where)
    if ms > MAX_EPOCH_MS:
        raise SignalValidationError(f"{where} is out of range")
    return int(ms)


def _strings(raw: Mapping[str, Any], key: str) -> list[str]:
    values = raw.get(key) or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise SignalValidationError(f"signals.{key} must be a list of strings")
    return [v for v in values if v]


def _optional_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise SignalValidationError(f"signals.{key} must be a string")
    return value


def _parse_events(items: list[Any]) -> list[CustomEvent]:
    out: list[CustomEvent] = []
    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise SignalValidationError(f"signals.events[{i}] must be an object")
        etype = item.get("type")
        if not isinstance(etype, str) or not etype.strip():
            raise SignalValidationError(f"signals.events[{i}].type is required")
        payload = item.get("payload")
        if payload is not None and not isinstance(payload, Mapping):
            raise SignalValidationError(f"signals.events[{i}].payload must be an object")
        ts = _timestamp(item.get("timestamp", 0), f"signals.events[{i}].timestamp")
        out.append(
            CustomEvent(
                type=etype.strip(),
                timestamp=ts,
                payload=dict(payload) if payload is not None else None,
            )
        )
    return out


def _parse_interactions(obj: dict[str, Any]) -> dict[str, InteractionStats]:
    out: dict[str, InteractionStats] = {}
    for selector, stats in obj.items():
        if not isinstance(stats, Mapping):
            raise SignalValidationError(f"signals.interactions[{selector!r}] must be an object")
        where = f"signals.interactions[{selector!r}]"
        out[str(selector)] = InteractionStats(
            clicks=int(_number(stats.get("clicks", 0), f"{where}.clicks")),
            hovers=int(_number(stats.get("hovers", 0), f"{where}.hovers")),
            inputs=int(_number(stats.get("inputs", 0), f"{where}.inputs")),
            last_seen=_timestamp(
                stats.get("last_seen", stats.get("last_timestamp", 0)), f"{where}.last_seen"
            ),
        )
    return out


def _parse_dead_clicks(items: list[Any]) -> list[DeadClick]:
    out: list[DeadClick] = []
    for i, item in enumerate(items):
        if not isinstance(item, Mapping) or not isinstance(item.get("selector"), str):
            raise SignalValidationError(f"signals.dead_clicks[{i}] needs a selector")
        out.append(
            DeadClick(
                selector=item["selector"],
                x=_number(item.get("x", 0.0), f"signals.dead_clicks[{i}].x", minimum=-math.inf),
                y=_number(item.get("y", 0.0), f"signals.dead_clicks[{i}].y", minimum=-math.inf),
                timestamp=_timestamp(item.get("timestamp", 0), f"signals.dead_clicks[{i}].timestamp"),
            )
        )
    return out


def _parse_forms(obj: dict[str, Any]) -> dict[str, FormStats]:
    out: dict[str, FormStats] = {}
    for selector, stats in obj.items():
        if not isinstance(stats, Mapping):
            raise SignalValidationError(f"signals.forms[{selector!r}] must be an object")
        fields = stats.get("focused_fields") or []
        if not isinstance(fields, list):
            raise SignalValidationError(f"signals.forms[{selector!r}].focused_fields must be a list")
        out[str(selector)] = FormStats(
            focused_fields=[str(f) for f in fields],
            inputs=int(_number(stats.get("inputs", 0), f"signals.forms[{selector!r}].inputs")),
            submitted=bool(stats.get("submitted", False)),
        )
    return out


def _parse_errors(items: list[Any]) -> list[ErrorRecord]:
    out: list[ErrorRecord] = []
    for i, item in enumerate(items):
        if isinstance(item, str):
            out.append(ErrorRecord(message=item))
        elif isinstance(item, Mapping):
            out.append(
                ErrorRecord(
                    message=str(item.get("message", "")),
                    source=item.get("source"),
                    timestamp=_timestamp(item.get("timestamp", 0), f"signals.errors[{i}].timestamp"),
                )
            )
        else:
            raise SignalValidationError("signals.errors entries must be strings or objects")
    return out


def _parse_mouse_trace(items: list[Any]) -> list[MouseSample]:
    out: list[MouseSample] = []
    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise SignalValidationError(f"signals.mouse_trace[{i}] must be an object")
        out.append(
            MouseSample(
                x=_number(item.get("x", 0.0), f"signals.mouse_trace[{i}].x", minimum=-math.inf),
                y=_number(item.get("y", 0.0), f"signals.mouse_trace[{i}].y", minimum=-math.inf),
                t=_timestamp(item.get("t", 0), f"signals.mouse_trace[{i}].t"),
            )
        )
    return out


def parse_signal_bundle(raw: Mapping[str, Any]) -> SignalBatch:
    """
    Build a SignalBatch from the inbound bundle.

    Nested sub-structures may arrive either as JSON text or already decoded.
    Raises SignalValidationError on malformed content.
    """
    if not isinstance(raw, Mapping):
        raise SignalValidationError("signals must be an object")

    dwell_raw = _decoded(raw, "dwell_time", dict)
    dwell = {
        str(k): _number(v, f"signals.dwell_time[{k!r}]") for k, v in dwell_raw.items() if str(k)
    }

    depth = _number(raw.get("scroll_depth") or 0, "signals.scroll_depth")
    if depth > 100:
        raise SignalValidationError("signals.scroll_depth must be <= 100")

    perf_raw = _decoded(raw, "performance", dict)
    performance = {str(k): _number(v, f"signals.performance[{k!r}]") for k, v in perf_raw.items()}

    return SignalBatch(
        dwell_time=dwell,
        scroll_velocity=_number(raw.get("scroll_velocity") or 0, "signals.scroll_velocity"),
        scroll_depth=int(depth),
        hesitation_event=bool(raw.get("hesitation_event", False)),
        rage_clicks=int(_number(raw.get("rage_clicks") or 0, "signals.rage_clicks")),
        copy_text=_strings(raw, "copy_text"),
        text_selections=_strings(raw, "text_selections"),
        dead_clicks=_parse_dead_clicks(_decoded(raw, "dead_clicks", list)),
        events=_parse_events(_decoded(raw, "events", list)),
        interactions=_parse_interactions(_decoded(raw, "interactions", dict)),
        forms=_parse_forms(_decoded(raw, "forms", dict)),
        performance=performance,
        errors=_parse_errors(_decoded(raw, "errors", list)),
        mouse_trace=_parse_mouse_trace(_decoded(raw, "mouse_trace", list)),
        url=_optional_str(raw, "url"),
        referrer=_optional_str(raw, "referrer"),
    )


def batch_to_wire(batch: SignalBatch, *, encode_nested: bool = True) -> dict[str, Any]:
    """
    Wire form of a batch. With encode_nested the ENCODED_FIELDS become JSON text.
    """
    nested: dict[str, Any] = {
        "dwell_time": dict(batch.dwell_time),
        "events": [
            {"type": e.type, "timestamp": e.timestamp, **({"payload": e.payload} if e.payload else {})}
            for e in batch.events
        ],
        "interactions": {
            sel: {
                "clicks": s.clicks,
                "hovers": s.hovers,
                "inputs": s.inputs,
                "last_seen": s.last_seen,
            }
            for sel, s in batch.interactions.items()
        },
        "dead_clicks": [
            {"selector": d.selector, "x": d.x, "y": d.y, "timestamp": d.timestamp}
            for d in batch.dead_clicks
        ],
        "forms": {
            sel: {"focused_fields": list(f.focused_fields), "inputs": f.inputs, "submitted": f.submitted}
            for sel, f in batch.forms.items()
        },
        "performance": dict(batch.performance),
        "errors": [
            {"message": e.message, "source": e.source, "timestamp": e.timestamp} for e in batch.errors
        ],
        "mouse_trace": [{"x": m.x, "y": m.y, "t": m.t} for m in batch.mouse_trace],
    }
    if encode_nested:
        nested = {k: json_dumps(v) for k, v in nested.items()}

    return {
        **nested,
        "scroll_velocity": batch.scroll_velocity,
        "scroll_depth": batch.scroll_depth,
        "hesitation_event": batch.hesitation_event,
        "rage_clicks": batch.rage_clicks,
        "copy_text": list(batch.copy_text),
        "text_selections": list(batch.text_selections),
        "url": batch.url,
        "referrer": batch.referrer,
    }
