"""
Core geometry types for the foot-hook part pipeline.

Everything here is plain numpy: 2-D points are ``(2,)`` arrays, polylines are
``(N, 2)`` arrays. Provides the profile descriptor, path stations and their
local frames, the closed offset loop handed to the kernel, and the
conversions to Shapely polygons used for validation and DXF output.
"""
from dataclasses import dataclass, field, replace
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from shapely.geometry import LinearRing, Polygon

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]

DEDUPE_EPS = 1e-6


# ─── Scalar / vector helpers ─────────────────────────────────────────────────

def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def smoothstep(edge0: float, edge1: float, x: float) -> float:
    """Hermite ease between 0 (at edge0) and 1 (at edge1)."""
    if edge1 <= edge0:
        return 1.0 if x >= edge1 else 0.0
    t = clamp((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def unit(v: np.ndarray, fallback: Sequence[float] = (0.0, 1.0)) -> np.ndarray:
    """Normalize *v*; degenerate vectors return *fallback*."""
    v = np.asarray(v, dtype=float)
    n = float(np.linalg.norm(v))
    if n > 1e-9:
        return v / n
    return np.asarray(fallback, dtype=float)


def left_normal(tangent: np.ndarray) -> np.ndarray:
    """Rotate a 2-D direction (or an (N, 2) array of them) by +90 degrees."""
    t = np.asarray(tangent, dtype=float)
    return np.stack([-t[..., 1], t[..., 0]], axis=-1)


def unit_rows(vectors: np.ndarray) -> np.ndarray:
    """Row-wise normalize an (N, 2) array, leaving zero rows at zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms > 1e-12, norms, 1.0)
    return vectors / safe


def dedupe_points(points: np.ndarray, eps: float = DEDUPE_EPS) -> np.ndarray:
    """Drop consecutive near-coincident points (and a trailing copy of the first)."""
    pts = np.asarray(points, dtype=float)
    if len(pts) == 0:
        return pts.reshape(0, 2)
    kept = [pts[0]]
    for p in pts[1:]:
        if np.linalg.norm(p - kept[-1]) > eps:
            kept.append(p)
    if len(kept) > 1 and np.linalg.norm(kept[-1] - kept[0]) <= eps:
        kept.pop()
    return np.array(kept)


# ─── Profile descriptor ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProfileDescriptor:
    """Five-value cross-section descriptor in a station's local (x, z) frame.

    ``end_x``/``end_z`` place the profile tip; the start handle is always
    vertical, the end handle leaves the tip along ``end_angle_deg``.
    """

    end_x: float = 50.0
    end_z: float = 35.0
    start_handle: float = 25.0
    end_handle: float = 35.0
    end_angle_deg: float = -120.0

    RANGES: ClassVar[Dict[str, Tuple[float, float]]] = {
        "end_x": (-2000.0, 2000.0),
        "end_z": (0.1, 2000.0),
        "start_handle": (0.0, 2000.0),
        "end_handle": (0.0, 2000.0),
        "end_angle_deg": (-180.0, 180.0),
    }

    def clamped(self) -> "ProfileDescriptor":
        values = {}
        for name, (lo, hi) in self.RANGES.items():
            v = float(getattr(self, name))
            values[name] = clamp(v, lo, hi) if np.isfinite(v) else lo
        return ProfileDescriptor(**values)

    def lerp(self, other: "ProfileDescriptor", t: float) -> "ProfileDescriptor":
        return ProfileDescriptor(
            end_x=lerp(self.end_x, other.end_x, t),
            end_z=lerp(self.end_z, other.end_z, t),
            start_handle=lerp(self.start_handle, other.start_handle, t),
            end_handle=lerp(self.end_handle, other.end_handle, t),
            end_angle_deg=lerp(self.end_angle_deg, other.end_angle_deg, t),
        )

    def with_end(self, end_x: float, end_z: float) -> "ProfileDescriptor":
        return replace(self, end_x=end_x, end_z=end_z)


# ─── Stations and local frames ───────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class StationFrame:
    """Orthonormal frame at a station: forward = tangent, lateral = left normal."""

    origin: np.ndarray   # (3,)
    forward: np.ndarray  # (3,)
    lateral: np.ndarray  # (3,)
    up: np.ndarray       # (3,)

    def to_world(self, x: float, z: float) -> np.ndarray:
        return self.origin + x * self.lateral + z * self.up

    def direction_to_world(self, dx: float, dz: float) -> np.ndarray:
        return dx * self.lateral + dz * self.up

    def to_local(self, point: np.ndarray) -> Tuple[float, float]:
        """Closed-form inverse of :meth:`to_world` (drops the forward component)."""
        d = np.asarray(point, dtype=float) - self.origin
        return float(d @ self.lateral), float(d @ self.up)

    def project(self, point: np.ndarray) -> np.ndarray:
        """Orthogonal projection of a world point onto the station plane."""
        x, z = self.to_local(point)
        return self.to_world(x, z)


@dataclass(frozen=True, eq=False)
class Station:
    """A resolved point on the path: position, unit tangent, cumulative length."""

    position: np.ndarray  # (2,)
    tangent: np.ndarray   # (2,)
    length: float
    index: Optional[int] = None

    @property
    def angle_deg(self) -> float:
        return float(np.degrees(np.arctan2(self.tangent[1], self.tangent[0])))

    @property
    def frame(self) -> StationFrame:
        t = unit(self.tangent)
        n = left_normal(t)
        return StationFrame(
            origin=np.array([self.position[0], self.position[1], 0.0]),
            forward=np.array([t[0], t[1], 0.0]),
            lateral=np.array([n[0], n[1], 0.0]),
            up=np.array([0.0, 0.0, 1.0]),
        )


# ─── Loops ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ThreePointArc:
    """Sketch marker: a true circular arc through *mid* ending at *end*."""

    mid: Vec2
    end: Vec2


LoopItem = Union[Vec2, ThreePointArc]


@dataclass(eq=False)
class OffsetLoop:
    """Closed cross-section: outer boundary then the reversed inner boundary.

    ``outer`` and ``inner`` always share their point count; ``inner`` is
    ``outer`` pushed by the wall thickness along the left normal times
    ``inward_sign``.
    """

    outer: np.ndarray  # (N, 2)
    inner: np.ndarray  # (N, 2)
    inward_sign: float = 1.0
    thickness: float = 0.0
    is_fallback: bool = False

    @property
    def outer_end(self) -> np.ndarray:
        return self.outer[-1]

    @property
    def inner_end(self) -> np.ndarray:
        return self.inner[-1]

    def ring(self, closed: bool = True) -> np.ndarray:
        pts = dedupe_points(np.vstack([self.outer, self.inner[::-1]]))
        if closed and len(pts):
            pts = np.vstack([pts, pts[:1]])
        return pts

    def polygon(self) -> Polygon:
        return polygon_from_points(self.ring(closed=False))

    def is_simple(self) -> bool:
        return ring_is_simple(self.ring(closed=False))


def unit_square_loop() -> OffsetLoop:
    """Fallback cross-section used whenever a profile degenerates."""
    return OffsetLoop(
        outer=np.array([[0.0, 0.0], [1.0, 0.0]]),
        inner=np.array([[0.0, 1.0], [1.0, 1.0]]),
        inward_sign=1.0,
        thickness=1.0,
        is_fallback=True,
    )


@dataclass(eq=False)
class FittedSection:
    """One loft station: where it sits, what profile it carries, how well it fit."""

    station: Station
    descriptor: ProfileDescriptor
    loop: OffsetLoop
    fit_error: float = 0.0
    evaluations: int = 0
    notes: Dict[str, float] = field(default_factory=dict)


# ─── Shapely conversions ─────────────────────────────────────────────────────

def polygon_from_points(points: np.ndarray) -> Polygon:
    pts = dedupe_points(points)
    if len(pts) < 3:
        return Polygon()
    return Polygon([tuple(p) for p in pts])


def ring_is_simple(points: np.ndarray) -> bool:
    pts = dedupe_points(points)
    if len(pts) < 3:
        return False
    return bool(LinearRing([tuple(p) for p in pts]).is_simple)


def items_to_points(items: Sequence[LoopItem], arc_samples: int = 8) -> np.ndarray:
    """Expand a sketch item list (points + arc markers) into plain points."""
    out: List[np.ndarray] = []
    for item in items:
        if isinstance(item, ThreePointArc):
            if not out:
                raise ValueError("Arc marker cannot start a loop")
            out.extend(sample_three_point_arc(out[-1], np.asarray(item.mid), np.asarray(item.end), arc_samples)[1:])
        else:
            out.append(np.asarray(item, dtype=float))
    return np.array(out).reshape(-1, 2)


def sample_three_point_arc(
    start: np.ndarray, mid: np.ndarray, end: np.ndarray, samples: int = 8,
) -> np.ndarray:
    """Points on the circle through start/mid/end, from start to end via mid."""
    ax, ay = start
    bx, by = mid
    cx, cy = end
    d = 2.0 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
    if abs(d) < 1e-12:
        return np.array([start, mid, end], dtype=float)
    ux = ((ax ** 2 + ay ** 2) * (by - cy) + (bx ** 2 + by ** 2) * (cy - ay) + (cx ** 2 + cy ** 2) * (ay - by)) / d
    uy = ((ax ** 2 + ay ** 2) * (cx - bx) + (bx ** 2 + by ** 2) * (ax - cx) + (cx ** 2 + cy ** 2) * (bx - ax)) / d
    center = np.array([ux, uy])
    r = float(np.linalg.norm(np.asarray(start) - center))
    a0 = np.arctan2(ay - uy, ax - ux)
    am = np.arctan2(by - uy, bx - ux)
    a1 = np.arctan2(cy - uy, cx - ux)
    sweep = (a1 - a0) % (2 * np.pi)
    if (am - a0) % (2 * np.pi) > sweep:
        sweep -= 2 * np.pi
    angles = a0 + sweep * np.linspace(0.0, 1.0, max(samples, 2) + 1)
    return center + r * np.stack([np.cos(angles), np.sin(angles)], axis=1)
