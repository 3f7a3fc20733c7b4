"""
2-D polyline toolkit for cutouts and fillets.

Pure numpy geometry on ``(N, 2)`` arrays: segment and loop intersections,
first-hit ray trimming, parity point-in-polygon, arc-length walks, pruning
of tiny features, stadium slot outlines and corner filleting of closed loops.
Closed loops are passed without a repeated closing point.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from geometry_primitives import LoopItem, ThreePointArc, dedupe_points, unit

logger = logging.getLogger(__name__)

EPS = 1e-9


@dataclass
class SegmentHit:
    point: np.ndarray
    t: float   # parameter on the first segment
    u: float   # parameter on the second segment


@dataclass
class LoopHit:
    point: np.ndarray
    index_a: int
    t_a: float
    index_b: int
    t_b: float


@dataclass
class RayHit:
    point: np.ndarray
    index: int      # segment index on the polyline
    t: float        # parameter along that segment
    distance: float  # along the ray


# ─── Intersections ───────────────────────────────────────────────────────────

def _cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def segment_intersection(a1, a2, b1, b2) -> Optional[SegmentHit]:
    """Proper intersection of segments a1-a2 and b1-b2 (parallel → None)."""
    a1 = np.asarray(a1, dtype=float)
    b1 = np.asarray(b1, dtype=float)
    r = np.asarray(a2, dtype=float) - a1
    s = np.asarray(b2, dtype=float) - b1
    denom = float(_cross(r, s))
    if abs(denom) < EPS:
        return None
    qp = b1 - a1
    t = float(_cross(qp, s)) / denom
    u = float(_cross(qp, r)) / denom
    if -EPS <= t <= 1.0 + EPS and -EPS <= u <= 1.0 + EPS:
        return SegmentHit(point=a1 + r * t, t=t, u=u)
    return None


def _segments(points: np.ndarray, closed: bool):
    pts = np.asarray(points, dtype=float)
    if closed:
        return pts, np.roll(pts, -1, axis=0)
    return pts[:-1], pts[1:]


def segment_crossings(a1, a2, starts: np.ndarray, ends: np.ndarray, strict: bool = False):
    """Vectorized test of one segment against many.

    Returns (mask, t, u) arrays, one entry per candidate segment.
    """
    a1 = np.asarray(a1, dtype=float)
    r = np.asarray(a2, dtype=float) - a1
    s = ends - starts
    denom = _cross(np.broadcast_to(r, s.shape), s)
    qp = starts - a1
    with np.errstate(divide="ignore", invalid="ignore"):
        t = _cross(qp, s) / denom
        u = _cross(qp, np.broadcast_to(r, s.shape)) / denom
    lo, hi = (EPS, 1.0 - EPS) if strict else (-EPS, 1.0 + EPS)
    mask = (np.abs(denom) > EPS) & (t >= lo) & (t <= hi) & (u >= lo) & (u <= hi)
    return mask, t, u


def loop_intersections(loop_a: np.ndarray, loop_b: np.ndarray) -> List[LoopHit]:
    """All crossings between two closed loops, ordered along *loop_a*."""
    a_start, a_end = _segments(loop_a, closed=True)
    b_start, b_end = _segments(loop_b, closed=True)
    hits: List[LoopHit] = []
    for i in range(len(a_start)):
        mask, t, u = segment_crossings(a_start[i], a_end[i], b_start, b_end)
        for j in np.nonzero(mask)[0]:
            point = a_start[i] + (a_end[i] - a_start[i]) * t[j]
            if any(np.linalg.norm(point - h.point) < 1e-7 for h in hits):
                continue
            hits.append(LoopHit(point, i, float(t[j]), int(j), float(u[j])))
    hits.sort(key=lambda h: (h.index_a, h.t_a))
    return hits


def trim_ray_to_polyline(
    origin,
    direction,
    polyline: np.ndarray,
    max_distance: float = float("inf"),
) -> Optional[RayHit]:
    """First point where the ray origin + s*direction (s > 0) meets *polyline*."""
    origin = np.asarray(origin, dtype=float)
    d = unit(direction)
    starts, ends = _segments(polyline, closed=False)
    s = ends - starts
    denom = _cross(np.broadcast_to(d, s.shape), s)
    qp = starts - origin
    with np.errstate(divide="ignore", invalid="ignore"):
        dist = _cross(qp, s) / denom
        u = _cross(qp, np.broadcast_to(d, s.shape)) / denom
    mask = (np.abs(denom) > EPS) & (dist > 1e-7) & (dist <= max_distance) & (u >= -EPS) & (u <= 1.0 + EPS)
    if not mask.any():
        return None
    candidates = np.nonzero(mask)[0]
    best = candidates[np.argmin(dist[candidates])]
    return RayHit(
        point=origin + d * dist[best],
        index=int(best),
        t=float(np.clip(u[best], 0.0, 1.0)),
        distance=float(dist[best]),
    )


def point_in_polygon(point, loop: np.ndarray) -> bool:
    """Even-odd parity test."""
    x, y = float(point[0]), float(point[1])
    pts = np.asarray(loop, dtype=float)
    inside = False
    j = len(pts) - 1
    for i in range(len(pts)):
        xi, yi = pts[i]
        xj, yj = pts[j]
        if (yi > y) != (yj > y):
            x_cross = xi + (y - yi) * (xj - xi) / (yj - yi)
            if x < x_cross:
                inside = not inside
        j = i
    return inside


# ─── Arc length ──────────────────────────────────────────────────────────────

def polyline_length(points: np.ndarray, closed: bool = False) -> float:
    starts, ends = _segments(points, closed)
    return float(np.linalg.norm(ends - starts, axis=1).sum())


def walk_loop(loop: np.ndarray, index: int, t: float, distance: float, forward: bool = True) -> np.ndarray:
    """Points along a closed loop starting at segment *index*, parameter *t*.

    Walks *distance* mm forward (or backward) and returns the visited points,
    starting with the start point and ending exactly *distance* away.
    """
    pts = np.asarray(loop, dtype=float)
    n = len(pts)
    start = pts[index] + (pts[(index + 1) % n] - pts[index]) * t
    out = [start]
    remaining = distance
    current = start
    k = (index + 1) % n if forward else index
    for _ in range(n + 1):
        nxt = pts[k]
        seg = float(np.linalg.norm(nxt - current))
        if seg >= remaining:
            if seg > EPS:
                out.append(current + (nxt - current) * (remaining / seg))
            return np.array(out)
        remaining -= seg
        if seg > EPS:
            out.append(nxt)
        current = nxt
        k = (k + 1) % n if forward else (k - 1) % n
    return np.array(out)


# ─── Cleanup ─────────────────────────────────────────────────────────────────

def prune_small_features(
    points: np.ndarray,
    min_edge: float = 0.05,
    collinear_tol: float = 1e-3,
    closed: bool = True,
) -> np.ndarray:
    """Drop vertices that make edges shorter than *min_edge* or sit within
    *collinear_tol* of the line through their neighbours.

    Open polylines keep both endpoints. Returns the input unchanged when
    pruning would leave fewer than three points.
    """
    pts = dedupe_points(points) if closed else np.asarray(points, dtype=float)
    if len(pts) < 3:
        return pts

    kept = [pts[0]]
    for p in pts[1:-1] if not closed else pts[1:]:
        if np.linalg.norm(p - kept[-1]) >= min_edge:
            kept.append(p)
    if not closed:
        if len(kept) > 1 and np.linalg.norm(pts[-1] - kept[-1]) < min_edge:
            kept.pop()
        kept.append(pts[-1])
    elif len(kept) > 1 and np.linalg.norm(kept[-1] - kept[0]) < min_edge:
        kept.pop()

    result = [kept[0]]
    for i in range(1, len(kept)):
        if i == len(kept) - 1 and not closed:
            result.append(kept[i])
            break
        nxt = kept[(i + 1) % len(kept)]
        prev = result[-1]
        chord = nxt - prev
        chord_len = float(np.linalg.norm(chord))
        if chord_len > EPS:
            deviation = abs(float(_cross(chord, kept[i] - prev))) / chord_len
            if deviation < collinear_tol:
                continue
        result.append(kept[i])

    out = np.array(result)
    if len(out) < (3 if closed else 2):
        return pts
    return out


# ─── Outlines ────────────────────────────────────────────────────────────────

def stadium_outline(c1, c2, diameter: float, arc_samples: int = 16) -> np.ndarray:
    """Counter-clockwise slot outline around the segment c1-c2.

    Coincident centres give a circle.
    """
    c1 = np.asarray(c1, dtype=float)
    c2 = np.asarray(c2, dtype=float)
    r = diameter / 2.0
    axis = c2 - c1
    if np.linalg.norm(axis) < 1e-9:
        angles = np.linspace(0.0, 2.0 * np.pi, 2 * arc_samples, endpoint=False)
        return c1 + r * np.stack([np.cos(angles), np.sin(angles)], axis=1)

    base = float(np.arctan2(axis[1], axis[0]))
    half = np.linspace(-np.pi / 2.0, np.pi / 2.0, arc_samples + 1)
    cap_2 = c2 + r * np.stack([np.cos(base + half), np.sin(base + half)], axis=1)
    cap_1 = c1 + r * np.stack([np.cos(base + np.pi + half), np.sin(base + np.pi + half)], axis=1)
    return np.vstack([cap_2, cap_1])


def circle_outline(center, diameter: float, samples: int = 32) -> np.ndarray:
    return stadium_outline(center, center, diameter, arc_samples=samples // 2)


# ─── Fillets ─────────────────────────────────────────────────────────────────

@dataclass
class _CornerFillet:
    index: int
    tangent_in: np.ndarray
    tangent_out: np.ndarray
    center: np.ndarray
    radius: float
    reach: float


def _cumulative_from(loop: np.ndarray, index: int, step: int) -> List[float]:
    """Arc length from loop[index] to each vertex visited walking by *step*."""
    n = len(loop)
    dists = [0.0]
    prev = loop[index]
    for k in range(1, n):
        p = loop[(index + step * k) % n]
        dists.append(dists[-1] + float(np.linalg.norm(p - prev)))
        prev = p
    return dists


def _stable_neighbor(loop: np.ndarray, index: int, min_arc: float, step: int) -> np.ndarray:
    n = len(loop)
    dists = _cumulative_from(loop, index, step)
    for k in range(1, n // 2 + 1):
        if dists[k] >= min_arc:
            return loop[(index + step * k) % n]
    return loop[(index + step * max(1, n // 2)) % n]


def _corner_fillet(
    loop: np.ndarray, index: int, radius: float, arc_in: float, arc_out: float, max_reach: float,
) -> Optional[_CornerFillet]:
    corner = loop[index]
    u_in = unit(_stable_neighbor(loop, index, arc_in, -1) - corner, fallback=(0.0, 0.0))
    u_out = unit(_stable_neighbor(loop, index, arc_out, +1) - corner, fallback=(0.0, 0.0))
    if not u_in.any() or not u_out.any():
        return None
    theta = float(np.arccos(np.clip(u_in @ u_out, -1.0, 1.0)))
    if theta < np.radians(1.0) or theta > np.radians(179.0):
        return None
    reach = radius / np.tan(theta / 2.0)
    r = radius
    if reach > max_reach:
        reach = max_reach
        r = reach * np.tan(theta / 2.0)
    if r <= EPS:
        return None
    bisector = unit(u_in + u_out)
    center = corner + bisector * (r / np.sin(theta / 2.0))
    return _CornerFillet(
        index=index,
        tangent_in=corner + u_in * reach,
        tangent_out=corner + u_out * reach,
        center=center,
        radius=float(r),
        reach=float(reach),
    )


def _arc_points(fillet: _CornerFillet, samples: int) -> np.ndarray:
    a0 = np.arctan2(*(fillet.tangent_in - fillet.center)[::-1])
    a1 = np.arctan2(*(fillet.tangent_out - fillet.center)[::-1])
    sweep = (a1 - a0 + np.pi) % (2.0 * np.pi) - np.pi
    angles = a0 + sweep * np.linspace(0.0, 1.0, max(samples, 2) + 1)
    return fillet.center + fillet.radius * np.stack([np.cos(angles), np.sin(angles)], axis=1)


def fillet_closed_loop(
    loop: np.ndarray,
    corners: Sequence[int],
    radius: float,
    arc_samples: int = 8,
    min_arc: Optional[float] = None,
    true_arc: bool = False,
) -> List[LoopItem]:
    """Round the given corners of a closed loop.

    Each corner's edge directions come from neighbours at least *min_arc*
    along the loop (default: the radius), the tangent distance from the
    half-angle relation ``d = r / tan(theta / 2)``. The reach is capped at
    45% of the arc length to the adjacent filleted corner so neighbouring
    fillets never overlap. Nearly straight corners are left alone.

    Returns sketch items: plain points, plus ``ThreePointArc`` markers when
    *true_arc* is set (sampled arc points otherwise).
    """
    pts = np.asarray(loop, dtype=float)
    n = len(pts)
    if radius <= 0 or n < 3 or not corners:
        return [tuple(p) for p in pts]
    min_arc = radius if min_arc is None else min_arc

    ordered = sorted(set(int(c) % n for c in corners))
    fwd = _cumulative_from(pts, 0, +1)
    perimeter = fwd[-1] + float(np.linalg.norm(pts[0] - pts[-1]))

    fillets: Dict[int, _CornerFillet] = {}
    for k, c in enumerate(ordered):
        if len(ordered) == 1:
            gap_next = gap_prev = perimeter / 2.0
        else:
            nxt = ordered[(k + 1) % len(ordered)]
            prv = ordered[k - 1]
            gap_next = (fwd[nxt] - fwd[c]) % perimeter or perimeter
            gap_prev = (fwd[c] - fwd[prv]) % perimeter or perimeter
        # Neighbour search never walks past the adjacent corner.
        fillet = _corner_fillet(
            pts, c, radius, min(min_arc, 0.99 * gap_prev), min(min_arc, 0.99 * gap_next),
            0.45 * min(gap_next, gap_prev),
        )
        if fillet is None:
            logger.debug("Corner %d left sharp (flat or degenerate)", c)
            continue
        fillets[c] = fillet

    removed = set()
    for c, fillet in fillets.items():
        for step in (-1, +1):
            dists = _cumulative_from(pts, c, step)
            for k in range(1, n):
                if dists[k] >= fillet.reach:
                    break
                removed.add((c + step * k) % n)

    items: List[LoopItem] = []
    for i in range(n):
        if i in fillets:
            f = fillets[i]
            if true_arc:
                mid = _arc_points(f, 2)[1]
                items.append(tuple(f.tangent_in))
                items.append(ThreePointArc(mid=tuple(mid), end=tuple(f.tangent_out)))
            else:
                items.extend(tuple(p) for p in _arc_points(f, arc_samples))
        elif i not in removed:
            items.append(tuple(pts[i]))
    return items
