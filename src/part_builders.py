"""
Per-part solid builders: base, toe, heel.

Each builder is a plain function of (kernel, design) so it can run in a
worker thread. The toe and heel share the station layout: anchor A at the
path start, B at ``station_b`` mm, C a further ``station_c`` mm on, the heel
running from C to the end of the path.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

import numpy as np

from baseplate import BaseplateLayout, plan_baseplate
from design_params import DesignParams, ToeParams
from geometry_kernel import GeometryKernel, SketchPlane, fillet_with_retry
from geometry_primitives import FittedSection, Station, lerp
from loft_assembler import assemble_loft
from path_sampler import SampledPath, sample_path
from profile_synth import capped_loop
from rail_fitter import fit_rail_sections, make_anchor

logger = logging.getLogger(__name__)

PARTS = ("base", "toe", "heel")
PAD_OVERLAP = 0.01
CUT_MARGIN = 1.0
SECTION_CUT_EXTENT = 10000.0


@dataclass
class ToeLayout:
    index_a: int
    index_b: int
    index_c: int
    stations: List[Station]


def toe_layout(path: SampledPath, toe: ToeParams) -> ToeLayout:
    """Anchor indices and loft stations for the toe rail."""
    last = path.last_index
    idx_b = min(max(path.index_at_length(toe.station_b), 1), last - 1)
    idx_c = min(max(path.index_at_length(path.cumulative[idx_b] + toe.station_c), idx_b + 1), last)
    first_span = path.stations_between(0, idx_b, toe.mid_ab + 2)
    second_span = path.stations_between(idx_b, idx_c, toe.mid_bc + 2)
    return ToeLayout(0, idx_b, idx_c, first_span + second_span[1:])


def toe_sections(path: SampledPath, design: DesignParams) -> List[FittedSection]:
    toe = design.toe
    layout = toe_layout(path, toe)
    anchors = [make_anchor(path.station_at_index(layout.index_a), toe.a.descriptor, toe.a.strength, toe.thickness)]
    if toe.profile_b_enabled:
        anchors.append(make_anchor(path.station_at_index(layout.index_b), toe.b.descriptor, toe.b.strength, toe.thickness))
    anchors.append(make_anchor(path.station_at_index(layout.index_c), toe.c.descriptor, toe.c.strength, toe.thickness))
    return fit_rail_sections(
        anchors,
        layout.stations,
        toe.thickness,
        lead_shrink=toe.lead_shrink,
        lead_band=toe.lead_band,
    )


def heel_sections(path: SampledPath, design: DesignParams) -> List[FittedSection]:
    """Profile C carried from station C to the path end, clipped from
    height_c down to height_d."""
    toe, heel = design.toe, design.heel
    idx_c = toe_layout(path, toe).index_c
    if idx_c >= path.last_index:
        return []
    descriptor = toe.c.descriptor.clamped()
    stations = path.stations_between(idx_c, path.last_index, heel.mid_count + 2)
    sections = []
    for j, station in enumerate(stations):
        height = lerp(heel.height_c, heel.height_d, j / (len(stations) - 1))
        height = min(height, descriptor.end_z)
        loop = capped_loop(descriptor, toe.thickness, height, heel.normal_cap)
        sections.append(FittedSection(station=station, descriptor=descriptor, loop=loop, notes={"height": height}))
    return sections


# ─── Solids ──────────────────────────────────────────────────────────────────

def _extrude_points(kernel: GeometryKernel, points: np.ndarray, z: float, depth: float) -> Any:
    sketch = kernel.sketch([(float(x), float(y)) for x, y in points], SketchPlane.xy(z))
    return kernel.extrude(sketch, depth)


def base_solid_from_layout(kernel: GeometryKernel, layout: BaseplateLayout, edge_fillet_radius: float = 0.0) -> Any:
    thk = layout.thickness
    plate = kernel.extrude(kernel.sketch(layout.outline_items, SketchPlane.xy()), -thk)
    pad_depth = layout.washer_thickness
    for washer in layout.washers:
        pad = _extrude_points(kernel, washer, -thk + PAD_OVERLAP, -(pad_depth + PAD_OVERLAP))
        plate = kernel.fuse(plate, pad)
    for patch in layout.seam_patches:
        plate = kernel.fuse(plate, _extrude_points(kernel, patch, 0.0, -(thk + pad_depth)))
    if edge_fillet_radius > 0:
        plate = fillet_with_retry(kernel, plate, edge_fillet_radius, ">Z")
    for hole in layout.holes:
        depth = thk + pad_depth + 2.0 * CUT_MARGIN
        plate = kernel.cut(plate, _extrude_points(kernel, hole.outline, CUT_MARGIN, -depth))
    return plate


def build_base(kernel: GeometryKernel, design: DesignParams) -> Any:
    path = sample_path(design.path)
    layout = plan_baseplate(path, design.base)
    return base_solid_from_layout(kernel, layout, design.base.edge_fillet_radius)


def build_toe(kernel: GeometryKernel, design: DesignParams) -> Any:
    path = sample_path(design.path)
    sections = toe_sections(path, design)
    solid = assemble_loft(kernel, sections)
    return fillet_with_retry(kernel, solid, design.toe.edge_fillet_radius)


def build_heel(kernel: GeometryKernel, design: DesignParams) -> Any:
    path = sample_path(design.path)
    sections = heel_sections(path, design)
    solid = assemble_loft(kernel, sections)
    return fillet_with_retry(kernel, solid, design.heel.edge_fillet_radius)


PART_BUILDERS: Dict[str, Callable[[GeometryKernel, DesignParams], Any]] = {
    "base": build_base,
    "toe": build_toe,
    "heel": build_heel,
}


def build_part(kernel: GeometryKernel, part: str, design: DesignParams) -> Any:
    try:
        builder = PART_BUILDERS[part]
    except KeyError:
        raise ValueError(f"Unknown part: {part!r}") from None
    logger.debug("Building %s", part)
    return builder(kernel, design)


def apply_section_cut(kernel: GeometryKernel, solid: Any, y: float) -> Any:
    """Keep the half-space y <= *y* by cutting away everything beyond it."""
    beyond = kernel.box(
        (-SECTION_CUT_EXTENT, y, -SECTION_CUT_EXTENT),
        (SECTION_CUT_EXTENT, 2.0 * SECTION_CUT_EXTENT, SECTION_CUT_EXTENT),
    )
    return kernel.cut(solid, beyond)
