"""
Rail fitting between anchor profiles.

Each anchor profile contributes two 3-D points: its outer and inner tip.
Those points are joined along the path by Hermite rails (one through the
outer tips, one through the inner tips). At every intermediate station the
descriptor is reconstructed so the synthesized profile lands on both rails:

1. the outer tip is solved in closed form by projecting the outer rail point
   onto the station plane;
2. the handles and a centre end-angle are interpolated between the
   bracketing anchors;
3. the end angle is searched (coarse grid, shrinking refinement grids, a
   parabolic polish) to bring the inner tip onto the projected inner rail;
4. an optional leading-edge shrink lowers the tip near the first anchor.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

import numpy as np

from geometry_primitives import (
    FittedSection,
    ProfileDescriptor,
    Station,
    StationFrame,
    clamp,
    lerp,
    smoothstep,
    unit,
)
from profile_synth import build_offset_loop, profile_endpoints

logger = logging.getLogger(__name__)

STRENGTH_RANGE = (0.2, 8.0)
PRE_ANCHOR_CHORD_WEIGHT = 0.45
PRE_ANCHOR_NORMAL_WEIGHT = 0.55
PRE_ANCHOR_TANGENT_SCALE = 0.30
INTERIOR_TANGENT_SCALE = 0.5

COARSE_SAMPLES = 17
COARSE_HALF_WINDOW_DEG = 55.0
REFINE_PASSES = 3
REFINE_SAMPLES = 9
REFINE_SHRINK = 0.35


@dataclass(eq=False)
class RailAnchor:
    """Anchor profile placed at a station, with its tips in world space."""
    station: Station
    descriptor: ProfileDescriptor
    strength: float
    outer: np.ndarray       # (3,)
    inner: np.ndarray       # (3,)
    end_normal: np.ndarray  # (3,) outer tip normal in world space


def make_anchor(station: Station, descriptor: ProfileDescriptor, strength: float, thickness: float) -> RailAnchor:
    desc = descriptor.clamped()
    frame = station.frame
    ends = profile_endpoints(desc, thickness)
    return RailAnchor(
        station=station,
        descriptor=desc,
        strength=clamp(strength, *STRENGTH_RANGE),
        outer=frame.to_world(*ends.outer),
        inner=frame.to_world(*ends.inner),
        end_normal=frame.direction_to_world(*ends.normal),
    )


# ─── Hermite rails ───────────────────────────────────────────────────────────

def hermite(p0: np.ndarray, m0: np.ndarray, p1: np.ndarray, m1: np.ndarray, t: float) -> np.ndarray:
    t2 = t * t
    t3 = t2 * t
    h00 = 2 * t3 - 3 * t2 + 1
    h10 = t3 - 2 * t2 + t
    h01 = -2 * t3 + 3 * t2
    h11 = t3 - t2
    return h00 * p0 + h10 * m0 + h01 * p1 + h11 * m1


def rail_tangents(points: Sequence[np.ndarray], strengths: Sequence[float], start_normal: np.ndarray) -> List[np.ndarray]:
    """Per-anchor tangents for a Catmull-Rom style Hermite rail.

    Interior and last anchors use the neighbour chord scaled by
    ``0.5 / strength``. The first anchor has no predecessor, so its tangent
    blends the chord to the next anchor with *start_normal* at 0.30 of the
    chord length. The normal is used as given; see ``oriented_start_normal``.
    """
    n = len(points)
    tangents: List[np.ndarray] = []
    for k in range(n):
        s = clamp(strengths[k], *STRENGTH_RANGE)
        if k == 0:
            chord = points[1] - points[0]
            length = float(np.linalg.norm(chord))
            if length < 1e-9:
                tangents.append(np.zeros(3))
                continue
            chord_dir = chord / length
            normal = unit(start_normal, fallback=chord_dir)
            blend = unit(PRE_ANCHOR_CHORD_WEIGHT * chord_dir + PRE_ANCHOR_NORMAL_WEIGHT * normal, fallback=chord_dir)
            tangents.append(blend * (PRE_ANCHOR_TANGENT_SCALE * length / s))
        elif k == n - 1:
            tangents.append((points[k] - points[k - 1]) * (INTERIOR_TANGENT_SCALE / s))
        else:
            tangents.append((points[k + 1] - points[k - 1]) * (INTERIOR_TANGENT_SCALE / s))
    return tangents


@dataclass(eq=False)
class Rail:
    points: List[np.ndarray]
    tangents: List[np.ndarray]
    lengths: List[float]

    def span_at(self, length: float) -> Tuple[int, float]:
        """Segment index and local parameter for a path arc length."""
        k = 0
        while k < len(self.lengths) - 2 and length > self.lengths[k + 1]:
            k += 1
        span = self.lengths[k + 1] - self.lengths[k]
        t = (length - self.lengths[k]) / span if span > 1e-9 else 0.0
        return k, clamp(t, 0.0, 1.0)

    def point_at(self, length: float) -> np.ndarray:
        k, t = self.span_at(length)
        return hermite(self.points[k], self.tangents[k], self.points[k + 1], self.tangents[k + 1], t)


def oriented_start_normal(anchors: Sequence[RailAnchor]) -> np.ndarray:
    """First anchor's end normal, flipped once to agree with the outer chord.

    Both rails share it, so they leave the first anchor on the same side.
    """
    normal = anchors[0].end_normal
    if normal @ (anchors[1].outer - anchors[0].outer) < 0:
        return -normal
    return normal


def build_rails(anchors: Sequence[RailAnchor]) -> Tuple[Rail, Rail]:
    lengths = [a.station.length for a in anchors]
    strengths = [a.strength for a in anchors]
    normal = oriented_start_normal(anchors)
    outer_pts = [a.outer for a in anchors]
    inner_pts = [a.inner for a in anchors]
    outer = Rail(outer_pts, rail_tangents(outer_pts, strengths, normal), lengths)
    inner = Rail(inner_pts, rail_tangents(inner_pts, strengths, normal), lengths)
    return outer, inner


# ─── End-angle search ────────────────────────────────────────────────────────

def inner_fit_error(
    frame: StationFrame, base: ProfileDescriptor, thickness: float, target: np.ndarray,
) -> Callable[[float], float]:
    """Squared world distance from the achieved inner tip to *target*."""
    def error(angle: float) -> float:
        desc = ProfileDescriptor(
            base.end_x, base.end_z, base.start_handle, base.end_handle, clamp(angle, -180.0, 180.0),
        )
        ends = profile_endpoints(desc, thickness)
        achieved = frame.to_world(*ends.inner)
        return float(np.sum((achieved - target) ** 2))
    return error


def search_end_angle(error: Callable[[float], float], center: float) -> Tuple[float, float, int]:
    """Minimize *error* over the end angle around *center*.

    Returns (angle, error, evaluations). The number of evaluations is fixed
    by the grid sizes, so the search cost is bounded.
    """
    evaluations = 0
    best_angle = clamp(center, -180.0, 180.0)
    best_err = float("inf")

    def scan(mid: float, half: float, count: int) -> None:
        nonlocal best_angle, best_err, evaluations
        for offset in np.linspace(-half, half, count):
            angle = clamp(mid + float(offset), -180.0, 180.0)
            err = error(angle)
            evaluations += 1
            if err < best_err:
                best_angle, best_err = angle, err

    half = COARSE_HALF_WINDOW_DEG
    scan(best_angle, half, COARSE_SAMPLES)
    for _ in range(REFINE_PASSES):
        half *= REFINE_SHRINK
        scan(best_angle, half, REFINE_SAMPLES)

    step = 2.0 * half / (REFINE_SAMPLES - 1)
    f_lo = error(clamp(best_angle - step, -180.0, 180.0))
    f_hi = error(clamp(best_angle + step, -180.0, 180.0))
    evaluations += 2
    curvature = f_lo - 2.0 * best_err + f_hi
    if curvature > 1e-18:
        shift = clamp(0.5 * step * (f_lo - f_hi) / curvature, -step, step)
        candidate = clamp(best_angle + shift, -180.0, 180.0)
        err = error(candidate)
        evaluations += 1
        if err < best_err:
            best_angle, best_err = candidate, err
    return best_angle, best_err, evaluations


def leading_edge_shrink(distance_from_start: float, amount: float, band: float) -> float:
    """How much to lower the tip at *distance_from_start* mm past the first anchor."""
    if amount <= 0:
        return 0.0
    return amount * (1.0 - smoothstep(0.0, band, distance_from_start))


# ─── Fitting ─────────────────────────────────────────────────────────────────

def fit_rail_sections(
    anchors: Sequence[RailAnchor],
    stations: Sequence[Station],
    thickness: float,
    lead_shrink: float = 0.0,
    lead_band: float = 15.0,
) -> List[FittedSection]:
    """Reconstruct a descriptor at every station so both rails are honoured."""
    if len(anchors) < 2:
        raise ValueError("Rail fitting needs at least two anchors")
    outer_rail, inner_rail = build_rails(anchors)
    start = anchors[0].station.length

    sections: List[FittedSection] = []
    for station in stations:
        frame = station.frame
        k, t = outer_rail.span_at(station.length)
        a, b = anchors[k].descriptor, anchors[k + 1].descriptor

        end_x, end_z = frame.to_local(outer_rail.point_at(station.length))
        interp = a.lerp(b, t)
        base = ProfileDescriptor(end_x, end_z, interp.start_handle, interp.end_handle, interp.end_angle_deg).clamped()

        target = frame.project(inner_rail.point_at(station.length))
        angle, err, evals = search_end_angle(inner_fit_error(frame, base, thickness, target), base.end_angle_deg)

        shrink = leading_edge_shrink(station.length - start, lead_shrink, lead_band)
        descriptor = ProfileDescriptor(
            base.end_x, base.end_z - shrink, base.start_handle, base.end_handle, angle,
        ).clamped()
        sections.append(FittedSection(
            station=station,
            descriptor=descriptor,
            loop=build_offset_loop(descriptor, thickness),
            fit_error=err,
            evaluations=evals,
            notes={"t": t, "shrink": shrink},
        ))
        logger.debug(
            "Station @%.2f mm: end=(%.2f, %.2f) angle=%.2f err=%.3g",
            station.length, descriptor.end_x, descriptor.end_z, angle, err,
        )
    return sections
