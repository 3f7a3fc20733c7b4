"""
Baseplate layout.

The plate outline runs along the spine: the spine itself is one long edge,
the spine pushed out by the plate width along its left normal is the other.
Its four corners are rounded. Screw holes (optionally slotted, optionally
paired) are placed relative to the spine, with washer pads under the plate
and, where a pad pokes out of the outline, small seam patches that fill the
concave corner between pad and plate.

Everything here is 2-D; ``part_builders`` turns the layout into a solid.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import Polygon
from shapely.ops import unary_union

from design_params import BaseplateParams, ScrewHoleParams
from geometry_primitives import (
    LoopItem,
    dedupe_points,
    items_to_points,
    left_normal,
    polygon_from_points,
    sample_three_point_arc,
    unit,
)
from path_sampler import SampledPath
from planar_cutouts import (
    LoopHit,
    fillet_closed_loop,
    loop_intersections,
    point_in_polygon,
    polyline_length,
    prune_small_features,
    stadium_outline,
    walk_loop,
)

logger = logging.getLogger(__name__)

SEAM_WALK_FACTOR = 3.0
SEAM_MIN_ANGLE_DEG = 5.0
SEAM_ARC_SAMPLES = 8


def rotate(v: np.ndarray, angle_deg: float) -> np.ndarray:
    a = np.radians(angle_deg)
    c, s = np.cos(a), np.sin(a)
    return np.array([c * v[0] - s * v[1], s * v[0] + c * v[1]])


@dataclass(eq=False)
class ScrewHole:
    center: np.ndarray
    outline: np.ndarray                  # stadium (or circle) through-cut
    washer: Optional[np.ndarray] = None  # pad outline under the plate


@dataclass(eq=False)
class BaseplateLayout:
    """2-D description of the baseplate, ready for extrusion or DXF."""
    outline_items: List[LoopItem]
    thickness: float
    holes: List[ScrewHole] = field(default_factory=list)
    seam_patches: List[np.ndarray] = field(default_factory=list)
    washer_thickness: float = 0.0

    @property
    def outline(self) -> np.ndarray:
        return items_to_points(self.outline_items)

    @property
    def washers(self) -> List[np.ndarray]:
        return [h.washer for h in self.holes if h.washer is not None]

    def outline_polygon(self) -> Polygon:
        return polygon_from_points(self.outline)

    def cutout_polygons(self) -> List[Polygon]:
        return [polygon_from_points(h.outline) for h in self.holes]

    def net_polygon(self) -> Polygon:
        """Outline minus all screw cutouts."""
        result = self.outline_polygon()
        cutouts = self.cutout_polygons()
        if cutouts:
            result = result.difference(unary_union(cutouts))
        return result

    def validate_geometry(self) -> List[str]:
        """Returns list of warning/error strings (empty = ok)."""
        issues = []
        outline = self.outline_polygon()
        if outline.is_empty:
            issues.append("Outline polygon is empty")
            return issues
        if not outline.is_valid:
            issues.append("Outline polygon is invalid")
        if outline.area < 1.0:
            issues.append(f"Outline area too small: {outline.area:.2f} mm2")
        for i, cutout in enumerate(self.cutout_polygons()):
            if not cutout.is_valid:
                issues.append(f"Screw cutout {i} is invalid")
            if not outline.intersects(cutout):
                issues.append(f"Screw cutout {i} misses the plate")
        return issues


# ─── Outline ─────────────────────────────────────────────────────────────────

def spine_edges(path: SampledPath, width: float) -> Tuple[np.ndarray, np.ndarray]:
    """(outer, inner) plate edges; inner is the spine, pinned to the origin."""
    inner = path.points.copy()
    inner[0] = (0.0, 0.0)
    outer = path.points + left_normal(path.tangents) * width
    return outer, inner


def outline_loop(path: SampledPath, width: float) -> Tuple[np.ndarray, List[int]]:
    """Closed plate loop and the indices of its four corners."""
    outer, inner = spine_edges(path, width)
    outer = prune_small_features(outer, closed=False)
    inner = prune_small_features(inner, closed=False)
    loop = np.vstack([outer, inner[::-1]])
    corners = [0, len(outer) - 1, len(outer), len(loop) - 1]
    return loop, corners


# ─── Screw holes ─────────────────────────────────────────────────────────────

def screw_hole_layout(path: SampledPath, screw: ScrewHoleParams) -> List[ScrewHole]:
    """Hole centres in path-relative placement, then slot and washer outlines."""
    if not screw.enabled:
        return []
    station = path.station_at_length(screw.y)
    anchor = station.position + left_normal(station.tangent) * screw.x
    axis = unit(rotate(station.tangent, screw.angle_deg))

    if screw.pair_distance > 0:
        centers = [anchor - axis * screw.pair_distance / 2.0, anchor + axis * screw.pair_distance / 2.0]
    else:
        centers = [anchor]
    if screw.secondary_offset != 0:
        shift = left_normal(axis) * screw.secondary_offset
        centers += [c + shift for c in centers]

    half = unit(rotate(axis, screw.slot_angle_deg)) * (screw.slot_length / 2.0)
    holes = []
    for c in centers:
        outline = stadium_outline(c - half, c + half, screw.diameter)
        washer = stadium_outline(c - half, c + half, screw.washer_diameter) if screw.has_washers else None
        holes.append(ScrewHole(center=c, outline=outline, washer=washer))
    logger.debug("Placed %d screw holes around (%.2f, %.2f)", len(holes), anchor[0], anchor[1])
    return holes


# ─── Seam patches ────────────────────────────────────────────────────────────

def ribbon_is_outside(point, outline: np.ndarray, disc: np.ndarray) -> bool:
    """Seam-side decision: a ribbon belongs where its interior is in neither polygon."""
    return not point_in_polygon(point, outline) and not point_in_polygon(point, disc)


def leg_direction(loop: np.ndarray, index: int, t: float, distance: float, forward: bool) -> Optional[np.ndarray]:
    """Unit direction of the loop boundary leaving a hit, or None if the walk is degenerate."""
    path = dedupe_points(walk_loop(loop, index, t, distance, forward))
    if len(path) < 2:
        return None
    return unit(path[1] - path[0])


def fillet_ribbon(apex: np.ndarray, u: np.ndarray, v: np.ndarray, radius: float) -> Optional[Tuple[np.ndarray, float]]:
    """Region between legs *u*, *v* leaving *apex* and the arc tangent to both.

    Returns (points, reach) where reach is the apex-to-tangent-point
    distance, or None when the legs are (anti)parallel.
    """
    theta = float(np.arccos(np.clip(np.dot(u, v), -1.0, 1.0)))
    min_angle = np.radians(SEAM_MIN_ANGLE_DEG)
    if theta < min_angle or theta > np.pi - min_angle:
        return None
    half = theta / 2.0
    reach = radius / np.tan(half)
    bisector = unit(u + v)
    center = apex + bisector * (radius / np.sin(half))
    arc = sample_three_point_arc(apex + u * reach, center - bisector * radius, apex + v * reach, SEAM_ARC_SAMPLES)
    return np.vstack([apex[None, :], arc]), reach


def seam_patch(outline: np.ndarray, disc: np.ndarray, hit: LoopHit, radius: float) -> Optional[np.ndarray]:
    """Fillet ribbon for one outline/pad crossing, or None if implausible.

    Both boundaries are walked a bounded distance from the hit in each
    direction; every pair of leaving directions forms a wedge whose apex is
    rounded. The ribbon cut off by the fillet is kept when it lies outside
    both the plate and the pad and fits within the walked distance.
    """
    walk = min(
        SEAM_WALK_FACTOR * radius,
        0.25 * polyline_length(outline, closed=True),
        0.25 * polyline_length(disc, closed=True),
    )
    apex = np.asarray(hit.point, dtype=float)
    best: Optional[Polygon] = None
    for along_outline in (True, False):
        u = leg_direction(outline, hit.index_a, hit.t_a, walk, along_outline)
        for along_disc in (True, False):
            v = leg_direction(disc, hit.index_b, hit.t_b, walk, along_disc)
            if u is None or v is None:
                continue
            ribbon = fillet_ribbon(apex, u, v, radius)
            if ribbon is None:
                continue
            points, reach = ribbon
            if reach > walk:
                continue
            poly = polygon_from_points(points)
            if not poly.is_valid or poly.area <= 1e-9:
                continue
            rep = poly.representative_point()
            if not ribbon_is_outside((rep.x, rep.y), outline, disc):
                continue
            if best is None or poly.area > best.area:
                best = poly
    if best is None:
        return None
    return np.array(best.exterior.coords)[:-1]


def seam_patches(outline: np.ndarray, washers: Sequence[np.ndarray], radius: float) -> List[np.ndarray]:
    patches = []
    for disc in washers:
        for hit in loop_intersections(outline, disc):
            patch = seam_patch(outline, disc, hit, radius)
            if patch is None:
                logger.warning(
                    "Seam patch at (%.2f, %.2f) rejected: no plausible fillet region",
                    hit.point[0], hit.point[1],
                )
                continue
            patches.append(patch)
    return patches


# ─── Layout ──────────────────────────────────────────────────────────────────

def plan_baseplate(path: SampledPath, base: BaseplateParams) -> BaseplateLayout:
    loop, corners = outline_loop(path, base.width)
    items = fillet_closed_loop(loop, corners, base.corner_radius, true_arc=True)
    holes = screw_hole_layout(path, base.screw)
    layout = BaseplateLayout(
        outline_items=items,
        thickness=base.thickness,
        holes=holes,
        washer_thickness=base.screw.washer_thickness if base.screw.has_washers else 0.0,
    )
    if base.screw.seam_patches and layout.washers:
        layout.seam_patches = seam_patches(layout.outline, layout.washers, base.screw.seam_radius)
    for issue in layout.validate_geometry():
        logger.warning("Baseplate geometry: %s", issue)
    logger.debug(
        "Baseplate: %d outline items, %d holes, %d seam patches",
        len(items), len(holes), len(layout.seam_patches),
    )
    return layout
