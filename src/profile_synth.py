"""
Cross-section synthesis: descriptor → closed constant-thickness loop.

The outer boundary is a cubic Bezier from the origin to the descriptor's end
point; the inner boundary is the outer one offset by the wall thickness
along the curve normal, on whichever side faces the chord midpoint. The
loop is guaranteed to be a simple polygon: offset self-crossings are
collapsed, an invalid ring is retried at half thickness, and anything still
broken (or degenerate input) becomes a unit square.
"""
import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from geometry_primitives import (
    OffsetLoop,
    ProfileDescriptor,
    clamp,
    left_normal,
    ring_is_simple,
    unit,
    unit_rows,
    unit_square_loop,
)
from planar_cutouts import segment_crossings, trim_ray_to_polyline

logger = logging.getLogger(__name__)

PROFILE_SAMPLES = 70
MIN_WALL = 0.2
WALL_SPAN_FRACTION = 0.45
TANGENT_STEP = 1e-3
MAX_THICKNESS_RETRIES = 3


# ─── Bezier ──────────────────────────────────────────────────────────────────

def control_polygon(desc: ProfileDescriptor) -> np.ndarray:
    """P0..P3 of the outer curve, inner handles clamped to the P0/P3 box."""
    d = desc.clamped()
    p0 = np.array([0.0, 0.0])
    p3 = np.array([d.end_x, d.end_z])
    p1 = np.array([0.0, d.start_handle])
    back = np.radians(d.end_angle_deg - 180.0)
    p2 = p3 - np.array([np.cos(back), np.sin(back)]) * d.end_handle
    lo = np.minimum(p0, p3)
    hi = np.maximum(p0, p3)
    return np.array([p0, np.clip(p1, lo, hi), np.clip(p2, lo, hi), p3])


def bezier_points(ctrl: np.ndarray, ts: np.ndarray) -> np.ndarray:
    t = np.asarray(ts, dtype=float)[:, None]
    mt = 1.0 - t
    return (
        mt ** 3 * ctrl[0]
        + 3.0 * mt ** 2 * t * ctrl[1]
        + 3.0 * mt * t ** 2 * ctrl[2]
        + t ** 3 * ctrl[3]
    )


def bezier_tangents(ctrl: np.ndarray, ts: np.ndarray) -> np.ndarray:
    """Unit tangents; where the derivative vanishes, a finite difference."""
    t = np.asarray(ts, dtype=float)[:, None]
    mt = 1.0 - t
    deriv = (
        3.0 * mt ** 2 * (ctrl[1] - ctrl[0])
        + 6.0 * mt * t * (ctrl[2] - ctrl[1])
        + 3.0 * t ** 2 * (ctrl[3] - ctrl[2])
    )
    tangents = unit_rows(deriv)
    flat = np.linalg.norm(tangents, axis=1) < 0.5
    for i in np.nonzero(flat)[0]:
        ti = float(ts[i])
        if ti >= TANGENT_STEP:
            a, b = ti - TANGENT_STEP, ti
        else:
            a, b = ti, ti + TANGENT_STEP
        pair = bezier_points(ctrl, np.array([a, b]))
        tangents[i] = unit(pair[1] - pair[0], fallback=(1.0, 0.0))
    return tangents


def wall_thickness(desc: ProfileDescriptor, thickness: float) -> float:
    d = desc.clamped()
    span = float(np.hypot(d.end_x, d.end_z))
    return clamp(thickness, MIN_WALL, max(MIN_WALL, span * WALL_SPAN_FRACTION))


def inward_sign(ctrl: np.ndarray, thickness: float) -> float:
    """+1 when offsetting along the left normal moves toward the chord midpoint."""
    mid = bezier_points(ctrl, np.array([0.5]))[0]
    normal = left_normal(bezier_tangents(ctrl, np.array([0.5]))[0])
    chord_mid = 0.5 * (ctrl[0] + ctrl[3])
    plus = np.linalg.norm(mid + normal * thickness - chord_mid)
    minus = np.linalg.norm(mid - normal * thickness - chord_mid)
    return 1.0 if plus <= minus else -1.0


def _is_degenerate(desc: ProfileDescriptor) -> bool:
    values = (desc.end_x, desc.end_z, desc.start_handle, desc.end_handle, desc.end_angle_deg)
    if not all(np.isfinite(v) for v in values):
        return True
    d = desc.clamped()
    return float(np.hypot(d.end_x, d.end_z)) < 1e-6


# ─── Endpoints ───────────────────────────────────────────────────────────────

@dataclass
class ProfileEndpoints:
    """Profile tip metadata, computed without building the full loop."""
    outer: np.ndarray   # (2,)
    inner: np.ndarray   # (2,)
    normal: np.ndarray  # (2,) unit left normal at the tip
    inward_sign: float
    thickness: float


def profile_endpoints(desc: ProfileDescriptor, thickness: float) -> ProfileEndpoints:
    """Outer and inner end points using the same tangent rules as the full loop."""
    if _is_degenerate(desc):
        square = unit_square_loop()
        return ProfileEndpoints(square.outer_end, square.inner_end, np.array([0.0, 1.0]), 1.0, 1.0)
    ctrl = control_polygon(desc)
    thk = wall_thickness(desc, thickness)
    sign = inward_sign(ctrl, thk)
    normal = left_normal(bezier_tangents(ctrl, np.array([1.0]))[0])
    outer = ctrl[3].copy()
    return ProfileEndpoints(outer, outer + normal * sign * thk, normal, sign, thk)


# ─── Loop construction ───────────────────────────────────────────────────────

def collapse_self_crossings(points: np.ndarray) -> np.ndarray:
    """Cut offset loops out of a polyline without changing its point count.

    For each segment, the farthest later segment it crosses is found and the
    vertices between them are replaced by the crossing point.
    """
    pts = np.array(points, dtype=float)
    n = len(pts)
    i = 0
    while i < n - 3:
        starts = pts[i + 2:n - 1]
        ends = pts[i + 3:n]
        mask, t, _ = segment_crossings(pts[i], pts[i + 1], starts, ends, strict=True)
        if mask.any():
            j = i + 2 + int(np.nonzero(mask)[0][-1])
            k = int(np.nonzero(mask)[0][-1])
            hit = pts[i] + (pts[i + 1] - pts[i]) * t[k]
            pts[i + 1:j + 1] = hit
            i = j
        else:
            i += 1
    return pts


def _offset_loop(desc: ProfileDescriptor, thickness: float, samples: int) -> OffsetLoop:
    ctrl = control_polygon(desc)
    ts = np.linspace(0.0, 1.0, samples)
    outer = bezier_points(ctrl, ts)
    normals = left_normal(bezier_tangents(ctrl, ts))
    sign = inward_sign(ctrl, thickness)
    inner = outer + normals * (sign * thickness)
    outer[0] = (0.0, 0.0)
    inner[0, 1] = 0.0
    inner = collapse_self_crossings(inner)
    return OffsetLoop(outer=outer, inner=inner, inward_sign=sign, thickness=thickness)


def build_offset_loop(
    desc: ProfileDescriptor,
    thickness: float,
    samples: int = PROFILE_SAMPLES,
) -> OffsetLoop:
    """Closed cross-section loop for *desc*; never raises, never self-intersects."""
    if _is_degenerate(desc):
        logger.debug("Degenerate profile %s, using unit square", desc)
        return unit_square_loop()

    thk = wall_thickness(desc, thickness)
    for attempt in range(MAX_THICKNESS_RETRIES + 1):
        loop = _offset_loop(desc, thk, samples)
        if ring_is_simple(loop.ring(closed=False)):
            if attempt:
                logger.debug("Profile valid after %d thickness halvings (t=%.3f)", attempt, thk)
            return loop
        thk *= 0.5
    logger.debug("Profile %s still self-intersecting, using unit square", desc)
    return unit_square_loop()


# ─── Clipped variants ────────────────────────────────────────────────────────

def truncate_at_height(points: np.ndarray, height: float) -> Tuple[np.ndarray, bool]:
    """Cut a boundary at its first upward crossing of z = *height*."""
    pts = np.asarray(points, dtype=float)
    for i in range(len(pts) - 1):
        z0, z1 = pts[i, 1], pts[i + 1, 1]
        if z0 <= height < z1:
            t = (height - z0) / (z1 - z0)
            cut = pts[i] + (pts[i + 1] - pts[i]) * t
            return np.vstack([pts[:i + 1], cut]), True
    return pts, False


def resample_polyline(points: np.ndarray, count: int) -> np.ndarray:
    """*count* points evenly spaced by arc length along *points*."""
    pts = np.asarray(points, dtype=float)
    seg = np.linalg.norm(np.diff(pts, axis=0), axis=1)
    cum = np.concatenate([[0.0], np.cumsum(seg)])
    if cum[-1] < 1e-12:
        return np.repeat(pts[:1], count, axis=0)
    targets = np.linspace(0.0, cum[-1], count)
    return np.stack([np.interp(targets, cum, pts[:, 0]), np.interp(targets, cum, pts[:, 1])], axis=1)


def clip_loop_horizontal(loop: OffsetLoop, height: float) -> OffsetLoop:
    """Both boundaries truncated at z = *height*, resampled to equal counts."""
    if loop.is_fallback or height <= 0:
        return loop
    outer, cut_outer = truncate_at_height(loop.outer, height)
    inner, cut_inner = truncate_at_height(loop.inner, height)
    if not (cut_outer or cut_inner):
        return loop
    n = len(loop.outer)
    return OffsetLoop(
        outer=resample_polyline(outer, n),
        inner=resample_polyline(inner, n),
        inward_sign=loop.inward_sign,
        thickness=loop.thickness,
    )


def normal_cap_loop(loop: OffsetLoop, height: float) -> OffsetLoop:
    """Outer boundary clipped at *height*, inner trimmed where the outer's
    inward normal at the cut meets it. Falls back to a horizontal clip when
    the normal misses the inner boundary.
    """
    if loop.is_fallback or height <= 0:
        return loop
    outer, cut = truncate_at_height(loop.outer, height)
    if not cut:
        return loop
    tangent = unit(outer[-1] - outer[-2], fallback=(0.0, 1.0))
    direction = left_normal(tangent) * loop.inward_sign
    hit = trim_ray_to_polyline(outer[-1], direction, loop.inner, max_distance=4.0 * max(loop.thickness, 1.0))
    if hit is None:
        logger.debug("Normal cap missed inner boundary at h=%.2f, clipping horizontally", height)
        return clip_loop_horizontal(loop, height)
    inner = np.vstack([loop.inner[:hit.index + 1], hit.point])
    n = len(loop.outer)
    return OffsetLoop(
        outer=resample_polyline(outer, n),
        inner=resample_polyline(inner, n),
        inward_sign=loop.inward_sign,
        thickness=loop.thickness,
    )


def capped_loop(desc: ProfileDescriptor, thickness: float, height: float, normal_cap: bool) -> OffsetLoop:
    """Build the loop for *desc* and clip it at *height*."""
    loop = build_offset_loop(desc, thickness)
    if normal_cap:
        return normal_cap_loop(loop, height)
    return clip_loop_horizontal(loop, height)
