"""
Abstract solid-modelling kernel interface.

The part builders only talk to this interface: sketch a closed loop on a
plane, extrude, loft, boolean, fillet, triangulate and serialize. The
CadQuery/OpenCascade backend lives in ``cadquery_kernel``; tests use an
in-memory fake.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from geometry_primitives import LoopItem, Vec3
from mesh_buffers import MeshBuffer, mesh_to_stl_bytes

logger = logging.getLogger(__name__)

FILLET_RETRY_FACTORS = (1.0, 0.75, 0.5, 0.25)
DEFAULT_MESH_TOLERANCE = 1.5
EXPORT_STL_TOLERANCE = 0.2


class GeometryKernelError(Exception):
    """Base exception for kernel errors."""
    pass


class KernelUnavailableError(GeometryKernelError):
    """The kernel library could not be loaded."""
    pass


class KernelOperationError(GeometryKernelError):
    """A modelling operation failed."""
    pass


@dataclass(frozen=True)
class SketchPlane:
    """Sketch plane: local x along ``x_dir``, local y = normal × x_dir."""
    origin: Vec3 = (0.0, 0.0, 0.0)
    x_dir: Vec3 = (1.0, 0.0, 0.0)
    normal: Vec3 = (0.0, 0.0, 1.0)

    @classmethod
    def xy(cls, z: float = 0.0) -> "SketchPlane":
        return cls(origin=(0.0, 0.0, z))

    @property
    def y_dir(self) -> np.ndarray:
        return np.cross(np.asarray(self.normal, dtype=float), np.asarray(self.x_dir, dtype=float))

    def to_world(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 2) local sketch coordinates to (N, 3) world points."""
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        origin = np.asarray(self.origin, dtype=float)
        x_dir = np.asarray(self.x_dir, dtype=float)
        return origin + pts[:, :1] * x_dir + pts[:, 1:2] * self.y_dir


class GeometryKernel(ABC):
    """Abstract base class for solid-modelling backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name, e.g. 'cadquery'."""
        ...

    @abstractmethod
    def sketch(self, loop: Sequence[LoopItem], plane: SketchPlane) -> Any:
        """Closed planar wire from points and ``ThreePointArc`` markers."""
        ...

    @abstractmethod
    def extrude(self, sketch: Any, distance: float) -> Any:
        """Prism along the sketch normal; negative distances go backwards."""
        ...

    @abstractmethod
    def loft(self, sketches: Sequence[Any], ruled: bool = False) -> Any:
        ...

    @abstractmethod
    def fuse(self, a: Any, b: Any) -> Any:
        ...

    @abstractmethod
    def cut(self, a: Any, b: Any) -> Any:
        ...

    @abstractmethod
    def box(self, min_corner: Vec3, max_corner: Vec3) -> Any:
        ...

    @abstractmethod
    def fillet(self, solid: Any, radius: float, selector: Optional[str] = None) -> Any:
        """Round the selected edges (all edges when *selector* is None)."""
        ...

    @abstractmethod
    def triangulate(self, solid: Any, tolerance: float) -> MeshBuffer:
        ...

    @abstractmethod
    def export_step(self, solid: Any) -> bytes:
        ...

    def export_stl(self, solid: Any, tolerance: float = EXPORT_STL_TOLERANCE) -> bytes:
        """Binary STL of the solid's triangulation."""
        return mesh_to_stl_bytes(self.triangulate(solid, tolerance))

    def fuse_all(self, solids: Sequence[Any]) -> Any:
        if not solids:
            raise KernelOperationError("No shapes to fuse")
        result = solids[0]
        for solid in solids[1:]:
            result = self.fuse(result, solid)
        return result


def fillet_with_retry(
    kernel: GeometryKernel,
    solid: Any,
    radius: float,
    selector: Optional[str] = None,
    factors: Tuple[float, ...] = FILLET_RETRY_FACTORS,
) -> Any:
    """Fillet at *radius*, retrying at shrinking fractions of it.

    Raises a single KernelOperationError naming every radius tried.
    """
    if radius <= 0:
        return solid
    tried: List[float] = []
    last_error: Optional[Exception] = None
    for factor in factors:
        r = radius * factor
        tried.append(r)
        try:
            return kernel.fillet(solid, r, selector)
        except GeometryKernelError as e:
            last_error = e
            logger.warning("Fillet r=%.3f on %s failed: %s", r, selector or "all edges", e)
    radii = ", ".join(f"{r:.3g}" for r in tried)
    raise KernelOperationError(f"Fillet failed at radii {radii}: {last_error}") from last_error
