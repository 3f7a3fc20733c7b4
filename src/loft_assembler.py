"""
Loft assembly: fitted sections → one solid.

Each section's loop is sketched in a vertical plane through its station:
local x along the path's left normal, local y straight up, plane normal
along the path tangent. Plane angles are unwrapped across stations so the
orientation never jumps by a full turn between neighbours.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np

from geometry_kernel import GeometryKernel, SketchPlane
from geometry_primitives import FittedSection, Station, unit_square_loop

logger = logging.getLogger(__name__)

THIN_EXTRUSION = 0.5


@dataclass(frozen=True)
class SectionPlane:
    origin: tuple
    angle_deg: float

    @property
    def normal(self) -> tuple:
        a = np.radians(self.angle_deg)
        return (float(np.cos(a)), float(np.sin(a)), 0.0)

    @property
    def x_dir(self) -> tuple:
        a = np.radians(self.angle_deg)
        return (float(-np.sin(a)), float(np.cos(a)), 0.0)

    def sketch_plane(self) -> SketchPlane:
        return SketchPlane(origin=self.origin, x_dir=self.x_dir, normal=self.normal)


def unwrap_angle(angle: float, previous: Optional[float]) -> float:
    """Shift *angle* by whole turns to land within 180 degrees of *previous*."""
    if previous is None:
        return angle
    while angle - previous > 180.0:
        angle -= 360.0
    while angle - previous < -180.0:
        angle += 360.0
    return angle


def section_planes(stations: Sequence[Station]) -> List[SectionPlane]:
    planes: List[SectionPlane] = []
    previous: Optional[float] = None
    for st in stations:
        angle = unwrap_angle(st.angle_deg, previous)
        planes.append(SectionPlane(origin=(float(st.position[0]), float(st.position[1]), 0.0), angle_deg=angle))
        previous = angle
    return planes


def assemble_loft(kernel: GeometryKernel, sections: Sequence[FittedSection]) -> Any:
    """Loft through every section in order.

    No sections gives a unit-square prism; a single section a thin
    extrusion of its loop.
    """
    if not sections:
        logger.debug("No loft sections, emitting unit-square placeholder")
        sketch = kernel.sketch(_loop_items(unit_square_loop().ring(closed=False)), SketchPlane.xy())
        return kernel.extrude(sketch, THIN_EXTRUSION)

    planes = section_planes([s.station for s in sections])
    sketches = [
        kernel.sketch(_loop_items(s.loop.ring(closed=False)), p.sketch_plane())
        for s, p in zip(sections, planes)
    ]
    if len(sketches) == 1:
        return kernel.extrude(sketches[0], THIN_EXTRUSION)

    logger.debug("Lofting %d sections (angles %.1f..%.1f deg)", len(sketches), planes[0].angle_deg, planes[-1].angle_deg)
    return kernel.loft(sketches)


def _loop_items(points: np.ndarray) -> list:
    return [(float(x), float(y)) for x, y in points]
