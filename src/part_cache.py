"""
Per-part solid and mesh cache.

Each part (base, toe, heel) owns one slot holding its last solid, the
fingerprint that solid was built from, and the last triangulation of it.
Fingerprints cover an explicit allow-list of typed parameter paths per
part, prefixed with a version tag so a change to the list invalidates old
entries. Meshes are keyed by the solid fingerprint plus the quantized
tolerance.

The cache is an ordinary object owned by the build orchestrator; nothing
here is global.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from design_params import DesignParams
from geometry_kernel import DEFAULT_MESH_TOLERANCE
from geometry_primitives import clamp
from mesh_buffers import MeshBuffer

logger = logging.getLogger(__name__)

FINGERPRINT_VERSION = "v1"
TOLERANCE_RANGE = (0.05, 10.0)

_PATH_KEYS = (
    "path.length", "path.heel_pct", "path.toe_pct", "path.p2x", "path.p3x", "path.p4x",
)
_SCREW_KEYS = tuple(
    f"base.screw.{name}" for name in (
        "x", "y", "angle_deg", "diameter", "washer_diameter", "washer_thickness",
        "slot_length", "pair_distance", "slot_angle_deg", "secondary_offset",
        "seam_patches", "seam_radius",
    )
)
_DESCRIPTOR_FIELDS = ("end_x", "end_z", "start_handle", "end_handle", "end_angle_deg")


def _anchor_keys(anchor: str) -> Tuple[str, ...]:
    return tuple(f"toe.{anchor}.descriptor.{f}" for f in _DESCRIPTOR_FIELDS) + (f"toe.{anchor}.strength",)


PART_FIELDS: Dict[str, Tuple[str, ...]] = {
    "base": _PATH_KEYS + (
        "base.width", "base.thickness", "base.corner_radius", "base.edge_fillet_radius",
    ) + _SCREW_KEYS,
    "toe": _PATH_KEYS + (
        "toe.thickness", "toe.station_b", "toe.station_c", "toe.mid_ab", "toe.mid_bc",
        "toe.profile_b_enabled", "toe.lead_shrink", "toe.lead_band", "toe.edge_fillet_radius",
    ) + _anchor_keys("a") + _anchor_keys("b") + _anchor_keys("c"),
    "heel": _PATH_KEYS + (
        "toe.thickness", "toe.station_b", "toe.station_c",
        "heel.height_c", "heel.height_d", "heel.mid_count", "heel.normal_cap", "heel.edge_fillet_radius",
    ) + _anchor_keys("c"),
}


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return repr(round(value, 9))
    return str(value)


def part_fingerprint(part: str, design: DesignParams) -> str:
    """Stable string over the part's allow-listed parameter paths."""
    flat = design.flatten()
    body = "|".join(f"{key}={_format_value(flat[key])}" for key in PART_FIELDS[part])
    return f"{part}:{FINGERPRINT_VERSION}|{body}"


def tolerance_key(tolerance: Any) -> float:
    """Clamp to [0.05, 10] and round to 3 decimals; junk → the default."""
    try:
        t = float(tolerance)
    except (TypeError, ValueError):
        t = DEFAULT_MESH_TOLERANCE
    if not math.isfinite(t):
        t = DEFAULT_MESH_TOLERANCE
    return round(clamp(t, *TOLERANCE_RANGE), 3)


@dataclass(frozen=True)
class PartFlags:
    """freeze: reuse any cached solid as-is; force: always rebuild."""
    freeze: bool = False
    force: bool = False


@dataclass
class CacheSlot:
    fingerprint: str
    solid: Any
    mesh: Optional[MeshBuffer] = None
    mesh_key: str = ""


@dataclass
class BuildOutcome:
    solid: Any
    fingerprint: str
    rebuilt: bool


@dataclass
class MeshOutcome:
    mesh: MeshBuffer
    key: str
    rebuilt: bool


class PartCache:
    """Solid + mesh slots for each part."""

    def __init__(self):
        self._slots: Dict[str, CacheSlot] = {}

    def get(self, part: str) -> Optional[CacheSlot]:
        return self._slots.get(part)

    def invalidate(self, part: Optional[str] = None) -> None:
        if part is None:
            self._slots.clear()
        else:
            self._slots.pop(part, None)

    async def get_or_build(
        self,
        part: str,
        design: DesignParams,
        flags: PartFlags,
        build: Callable[[], Awaitable[Any]],
    ) -> BuildOutcome:
        """Return the cached solid when allowed, else build and store a new one.

        A rebuild drops the part's mesh.
        """
        slot = self._slots.get(part)
        if flags.freeze and slot is not None:
            logger.debug("%s frozen, reusing cached solid", part)
            return BuildOutcome(slot.solid, slot.fingerprint, rebuilt=False)

        fingerprint = part_fingerprint(part, design)
        if slot is not None and not flags.force and slot.fingerprint == fingerprint:
            return BuildOutcome(slot.solid, fingerprint, rebuilt=False)

        solid = await build()
        self._slots[part] = CacheSlot(fingerprint=fingerprint, solid=solid)
        logger.info("Rebuilt %s%s", part, " (forced)" if flags.force else "")
        return BuildOutcome(solid, fingerprint, rebuilt=True)

    async def get_or_mesh(
        self,
        part: str,
        tolerance: Any,
        mesh: Callable[[Any, float], Awaitable[MeshBuffer]],
    ) -> MeshOutcome:
        """Triangulate the part's cached solid, reusing a mesh at the same
        quantized tolerance."""
        slot = self._slots.get(part)
        if slot is None:
            raise KeyError(f"No cached solid for {part!r}")
        tol = tolerance_key(tolerance)
        key = f"{slot.fingerprint}|tol={tol}"
        if slot.mesh is not None and slot.mesh_key == key:
            return MeshOutcome(slot.mesh, key, rebuilt=False)
        buffer = await mesh(slot.solid, tol)
        slot.mesh = buffer
        slot.mesh_key = key
        return MeshOutcome(buffer, key, rebuilt=True)
