"""
Worker message protocol.

Requests arrive as plain dicts ``{"type": ..., "payload": {...}}`` and are
parsed into typed request objects; responses are dataclasses with a
``to_message()`` that yields the dict posted back to the front end.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from mesh_buffers import MeshBuffer
from part_cache import PartFlags

PARTS = ("base", "toe", "heel")

EXPORT_MIME_TYPES = {
    "step": "model/step",
    "stl": "model/stl",
    "dxf": "image/vnd.dxf",
}
EXPORT_FILENAMES = {
    "step": "foothook.step",
    "stl": "foothook.stl",
    "dxf": "foothook_base.dxf",
}
LEGACY_EXPORT_TYPES = {"export_step": "step", "export_stl": "stl"}


class ProtocolError(ValueError):
    """Malformed or unsatisfiable request."""
    pass


# ─── Requests ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PingRequest:
    pass


@dataclass(frozen=True)
class BuildRequest:
    params: Dict[str, Any] = field(default_factory=dict)
    tolerance: Any = None
    parts: Dict[str, bool] = field(default_factory=dict)
    flags: Dict[str, PartFlags] = field(default_factory=dict)

    def enabled_parts(self):
        return [p for p in PARTS if self.parts.get(p, True)]


@dataclass(frozen=True)
class ExportRequest:
    format: str
    params: Dict[str, Any] = field(default_factory=dict)
    parts: Dict[str, bool] = field(default_factory=dict)
    flags: Dict[str, PartFlags] = field(default_factory=dict)
    filename: Optional[str] = None

    def enabled_parts(self):
        return [p for p in PARTS if self.parts.get(p, True)]

    @property
    def mime_type(self) -> str:
        return EXPORT_MIME_TYPES[self.format]

    @property
    def output_name(self) -> str:
        return self.filename or EXPORT_FILENAMES[self.format]


Request = Union[PingRequest, BuildRequest, ExportRequest]


def _parts_from_payload(payload: Mapping[str, Any]) -> Dict[str, bool]:
    parts = {p: True for p in PARTS}
    explicit = payload.get("parts")
    if isinstance(explicit, Mapping):
        for p in PARTS:
            if p in explicit:
                parts[p] = bool(explicit[p])
        return parts
    if "baseEnabled" in payload:
        parts["base"] = bool(payload["baseEnabled"])
    if "toeBEnabled" in payload or "toeCEnabled" in payload:
        parts["toe"] = bool(payload.get("toeBEnabled", False) or payload.get("toeCEnabled", False))
    if "heelEnabled" in payload:
        parts["heel"] = bool(payload["heelEnabled"])
    return parts


def _flags_from_payload(payload: Mapping[str, Any]) -> Dict[str, PartFlags]:
    explicit = payload.get("flags")
    if isinstance(explicit, Mapping):
        out = {}
        for p in PARTS:
            entry = explicit.get(p) or {}
            out[p] = PartFlags(freeze=bool(entry.get("freeze", False)), force=bool(entry.get("force", False)))
        return out
    force_all = bool(payload.get("forceFullRefit", False))
    return {
        "base": PartFlags(freeze=bool(payload.get("freezeBaseRefit", False)), force=force_all),
        "toe": PartFlags(freeze=bool(payload.get("freezeToeRefit", False)), force=force_all),
        "heel": PartFlags(
            freeze=bool(payload.get("freezeHeelRefit", False)),
            force=force_all or bool(payload.get("forceHeelRefit", False)),
        ),
    }


def parse_request(message: Any) -> Request:
    if not isinstance(message, Mapping):
        raise ProtocolError(f"Expected a message object, got {type(message).__name__}")
    kind = message.get("type")
    payload = message.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise ProtocolError("payload must be an object")
    params = payload.get("params") or {}
    if not isinstance(params, Mapping):
        raise ProtocolError("params must be an object")

    if kind == "ping":
        return PingRequest()
    if kind == "build":
        return BuildRequest(
            params=dict(params),
            tolerance=payload.get("tolerance"),
            parts=_parts_from_payload(payload),
            flags=_flags_from_payload(payload),
        )
    if kind == "export" or kind in LEGACY_EXPORT_TYPES:
        fmt = LEGACY_EXPORT_TYPES.get(kind) or str(payload.get("format", "")).lower()
        if fmt not in EXPORT_MIME_TYPES:
            raise ProtocolError(f"Unsupported export format: {fmt!r}")
        return ExportRequest(
            format=fmt,
            params=dict(params),
            parts=_parts_from_payload(payload),
            flags=_flags_from_payload(payload),
            filename=payload.get("filename"),
        )
    raise ProtocolError(f"Unknown message type: {kind!r}")


# ─── Responses ───────────────────────────────────────────────────────────────

@dataclass
class Pong:
    def to_message(self) -> Dict[str, Any]:
        return {"type": "pong"}


@dataclass
class Status:
    text: str

    def to_message(self) -> Dict[str, Any]:
        return {"type": "status", "payload": self.text}


@dataclass
class MeshResult:
    mesh: MeshBuffer

    def to_message(self) -> Dict[str, Any]:
        return {"type": "mesh", "payload": self.mesh.to_message()}


@dataclass
class FileResult:
    filename: str
    mime_type: str
    data: bytes

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "file",
            "payload": {"filename": self.filename, "mime": self.mime_type, "buffer": self.data},
        }


@dataclass
class ErrorResult:
    text: str

    def to_message(self) -> Dict[str, Any]:
        return {"type": "error", "payload": self.text}


Response = Union[Pong, Status, MeshResult, FileResult, ErrorResult]
