"""
Typed design parameters for the foot hook.

Every numeric field carries a default and an allowed range. ``from_mapping``
reads the flat key/value payload sent by the front end (legacy UI ids such as
``bp_len`` or ``toe_a_endx``), clamps each value into range and substitutes
the default for anything missing or non-finite. Nothing here raises on bad
input.
"""
import math
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from geometry_primitives import ProfileDescriptor, clamp


def read_number(
    mapping: Mapping[str, Any],
    key: str,
    default: float,
    lo: float,
    hi: float,
) -> float:
    """Numeric lookup that never raises: missing / garbage / NaN → default."""
    raw = mapping.get(key, default)
    if isinstance(raw, bool):
        raw = float(raw)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = default
    if not math.isfinite(value):
        value = default
    return clamp(value, lo, hi)


def read_flag(mapping: Mapping[str, Any], key: str, default: bool) -> bool:
    """Checkbox lookup. Accepts bools, 0/1 and the usual string spellings."""
    raw = mapping.get(key, default)
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(raw, (int, float)):
        return bool(raw) and not (isinstance(raw, float) and math.isnan(raw))
    return bool(raw) if raw is not None else default


def read_radius(
    mapping: Mapping[str, Any],
    enable_key: str,
    radius_key: str,
    default: float,
    enabled_by_default: bool,
    hi: float = 50.0,
) -> float:
    """Fillet radius gated by its checkbox: a disabled fillet reads as 0."""
    if not read_flag(mapping, enable_key, enabled_by_default):
        return 0.0
    return read_number(mapping, radius_key, default, 0.0, hi)


# ─── Path ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PathParams:
    """Spine control values. Lengths in mm, percentages 1-100."""
    length: float = 195.0
    heel_pct: float = 67.0
    toe_pct: float = 46.0
    p2x: float = -14.0
    p3x: float = -2.0
    p4x: float = 1.0

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "PathParams":
        d = cls()
        return cls(
            length=read_number(m, "bp_len", d.length, 50.0, 2000.0),
            heel_pct=read_number(m, "bp_heelPct", d.heel_pct, 1.0, 100.0),
            toe_pct=read_number(m, "bp_toePct", d.toe_pct, 1.0, 100.0),
            p2x=read_number(m, "bp_p2x", d.p2x, -1000.0, 1000.0),
            p3x=read_number(m, "bp_p3x", d.p3x, -1000.0, 1000.0),
            p4x=read_number(m, "bp_p4x", d.p4x, -1000.0, 1000.0),
        )


# ─── Baseplate ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScrewHoleParams:
    """Screw-hole pair placed relative to the spine.

    ``y`` is an arc length along the spine, ``x`` a lateral offset from it.
    A ``diameter`` of 0 disables the holes; a washer diameter no larger than
    the hole disables the pads (and with them the seam patches).
    """
    x: float = 15.0
    y: float = 40.0
    angle_deg: float = 0.0
    diameter: float = 5.0
    washer_diameter: float = 0.0
    washer_thickness: float = 2.0
    slot_length: float = 0.0
    pair_distance: float = 20.0
    slot_angle_deg: float = 0.0
    secondary_offset: float = 0.0
    seam_patches: bool = False
    seam_radius: float = 3.0

    @property
    def enabled(self) -> bool:
        return self.diameter > 0.0

    @property
    def has_washers(self) -> bool:
        return self.enabled and self.washer_diameter > self.diameter

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "ScrewHoleParams":
        d = cls()
        return cls(
            x=read_number(m, "bp_sh_x", d.x, -300.0, 300.0),
            y=read_number(m, "bp_sh_y", d.y, 0.0, 2000.0),
            angle_deg=read_number(m, "bp_sh_ang", d.angle_deg, -180.0, 180.0),
            diameter=read_number(m, "bp_sh_dia", d.diameter, 0.0, 50.0),
            washer_diameter=read_number(m, "bp_sh_washer", d.washer_diameter, 0.0, 120.0),
            washer_thickness=read_number(m, "bp_sh_washer_thk", d.washer_thickness, 0.2, 50.0),
            slot_length=read_number(m, "bp_sh_slot", d.slot_length, 0.0, 200.0),
            pair_distance=read_number(m, "bp_sh_dist", d.pair_distance, 0.0, 500.0),
            slot_angle_deg=read_number(m, "bp_sh_ang2", d.slot_angle_deg, -180.0, 180.0),
            secondary_offset=read_number(m, "bp_sh_off2", d.secondary_offset, -500.0, 500.0),
            seam_patches=read_flag(m, "sh_fil_1", d.seam_patches),
            seam_radius=read_number(m, "sh_fil_1_r", d.seam_radius, 0.2, 50.0),
        )


@dataclass(frozen=True)
class BaseplateParams:
    width: float = 30.0
    thickness: float = 12.0
    corner_radius: float = 4.0
    edge_fillet_radius: float = 0.0
    screw: ScrewHoleParams = field(default_factory=ScrewHoleParams)

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "BaseplateParams":
        d = cls()
        return cls(
            width=read_number(m, "bp_wid", d.width, 1.0, 300.0),
            thickness=read_number(m, "bp_thk", d.thickness, 0.5, 200.0),
            corner_radius=read_radius(m, "bp_fil_1", "bp_fil_1_r", d.corner_radius, True, hi=100.0),
            edge_fillet_radius=read_number(m, "fil_1", d.edge_fillet_radius, 0.0, 50.0),
            screw=ScrewHoleParams.from_mapping(m),
        )


# ─── Toe / heel ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AnchorParams:
    descriptor: ProfileDescriptor = field(default_factory=ProfileDescriptor)
    strength: float = 1.0

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any], prefix: str, default: "AnchorParams") -> "AnchorParams":
        dd = default.descriptor
        descriptor = ProfileDescriptor(
            end_x=read_number(m, f"{prefix}_endx", dd.end_x, *ProfileDescriptor.RANGES["end_x"]),
            end_z=read_number(m, f"{prefix}_endz", dd.end_z, *ProfileDescriptor.RANGES["end_z"]),
            start_handle=read_number(m, f"{prefix}_p1s", dd.start_handle, *ProfileDescriptor.RANGES["start_handle"]),
            end_handle=read_number(m, f"{prefix}_p3s", dd.end_handle, *ProfileDescriptor.RANGES["end_handle"]),
            end_angle_deg=read_number(m, f"{prefix}_enda", dd.end_angle_deg, *ProfileDescriptor.RANGES["end_angle_deg"]),
        )
        strength = read_number(m, f"{prefix}_strength", default.strength, 0.2, 8.0)
        return cls(descriptor=descriptor, strength=strength)


DEFAULT_ANCHOR_A = AnchorParams(ProfileDescriptor(50.0, 35.0, 25.0, 35.0, -120.0))
DEFAULT_ANCHOR_B = AnchorParams(ProfileDescriptor(45.0, 50.0, 30.0, 30.0, -150.0))
DEFAULT_ANCHOR_C = AnchorParams(ProfileDescriptor(50.0, 35.0, 25.0, 35.0, -120.0))


@dataclass(frozen=True)
class ToeParams:
    """Toe rail definition.

    ``station_b`` is the arc length from the path start to anchor B,
    ``station_c`` the arc length from B to C. ``mid_ab``/``mid_bc`` count the
    intermediate loft stations on each span.
    """
    thickness: float = 12.0
    a: AnchorParams = DEFAULT_ANCHOR_A
    b: AnchorParams = DEFAULT_ANCHOR_B
    c: AnchorParams = DEFAULT_ANCHOR_C
    station_b: float = 60.0
    station_c: float = 40.0
    mid_ab: int = 2
    mid_bc: int = 3
    profile_b_enabled: bool = True
    lead_shrink: float = 0.0
    lead_band: float = 15.0
    edge_fillet_radius: float = 0.0

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "ToeParams":
        d = cls()
        return cls(
            thickness=read_number(m, "toe_thk", d.thickness, 0.2, 200.0),
            a=AnchorParams.from_mapping(m, "toe_a", d.a),
            b=AnchorParams.from_mapping(m, "toe_b", d.b),
            c=AnchorParams.from_mapping(m, "toe_c", d.c),
            station_b=read_number(m, "toe_b_sta", d.station_b, 1.0, 2000.0),
            station_c=read_number(m, "toe_c_sta", d.station_c, 1.0, 2000.0),
            mid_ab=int(round(read_number(m, "toe_ab_mid", d.mid_ab, 0.0, 200.0))),
            mid_bc=int(round(read_number(m, "toe_bc_mid", d.mid_bc, 0.0, 200.0))),
            profile_b_enabled=read_flag(m, "toe_add_profile_b", d.profile_b_enabled),
            lead_shrink=read_number(m, "tagent_a_shrink", d.lead_shrink, 0.0, 200.0),
            lead_band=read_number(m, "tagent_a_band", d.lead_band, 0.1, 500.0),
            edge_fillet_radius=read_radius(m, "th_fil_1", "th_fil_1_r", 2.0, False),
        )


@dataclass(frozen=True)
class HeelParams:
    """Heel loft: profile C carried to the path end, clipped from height_c to height_d."""
    height_c: float = 20.0
    height_d: float = 10.0
    mid_count: int = 2
    normal_cap: bool = False
    edge_fillet_radius: float = 0.0

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any], c_end_z: float) -> "HeelParams":
        d = cls()
        top = max(0.1, c_end_z)
        return cls(
            height_c=read_number(m, "heel_h_c", min(d.height_c, top), 0.1, top),
            height_d=read_number(m, "heel_h_d", min(d.height_d, top), 0.1, top),
            mid_count=int(round(read_number(m, "heel_cd_mid", d.mid_count, 0.0, 200.0))),
            normal_cap=read_flag(m, "tagent_d_cut_perp", d.normal_cap),
            edge_fillet_radius=read_radius(m, "heel_fil_1", "heel_fil_1_r", 2.0, False),
        )


@dataclass(frozen=True)
class SectionCut:
    """Preview-only cut keeping the half-space ``y <= y``."""
    enabled: bool = False
    y: float = 0.0

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "SectionCut":
        return cls(
            enabled=read_flag(m, "sectionCutEnabled", False),
            y=read_number(m, "sectionCutY", 0.0, -5000.0, 5000.0),
        )


# ─── Whole design ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DesignParams:
    path: PathParams = field(default_factory=PathParams)
    base: BaseplateParams = field(default_factory=BaseplateParams)
    toe: ToeParams = field(default_factory=ToeParams)
    heel: HeelParams = field(default_factory=HeelParams)
    section_cut: SectionCut = field(default_factory=SectionCut)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "DesignParams":
        m = dict(mapping or {})
        toe = ToeParams.from_mapping(m)
        return cls(
            path=PathParams.from_mapping(m),
            base=BaseplateParams.from_mapping(m),
            toe=toe,
            heel=HeelParams.from_mapping(m, toe.c.descriptor.end_z),
            section_cut=SectionCut.from_mapping(m),
        )

    def flatten(self) -> Dict[str, Any]:
        """Dotted field paths → values, e.g. ``toe.a.descriptor.end_x``."""
        out: Dict[str, Any] = {}
        _flatten_into(out, "", self)
        return out


def _flatten_into(out: Dict[str, Any], prefix: str, obj: Any) -> None:
    for f in fields(obj):
        value = getattr(obj, f.name)
        key = f"{prefix}{f.name}"
        if is_dataclass(value):
            _flatten_into(out, key + ".", value)
        else:
            out[key] = value


def field_paths() -> Tuple[str, ...]:
    """Every dotted path ``flatten`` produces, in declaration order."""
    return tuple(DesignParams().flatten())
