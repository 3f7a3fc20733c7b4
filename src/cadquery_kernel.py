"""
CadQuery (OpenCascade) implementation of GeometryKernel.

CadQuery is imported on first use only: loading OpenCascade is slow and the
rest of the pipeline (layout, fitting, DXF) works without it. Every
modelling call is wrapped so OCC failures surface as KernelOperationError.
"""
import functools
import importlib
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from geometry_kernel import (
    GeometryKernel,
    KernelOperationError,
    KernelUnavailableError,
    SketchPlane,
)
from geometry_primitives import LoopItem, ThreePointArc, Vec3
from mesh_buffers import MeshBuffer, mesh_from_triangles

logger = logging.getLogger(__name__)

ANGULAR_TOLERANCE = 0.2


def _kernel_op(name: str):
    """Translate backend exceptions into KernelOperationError."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except KernelOperationError:
                raise
            except Exception as e:
                raise KernelOperationError(f"{name} failed: {e}") from e
        return wrapper
    return decorator


@dataclass
class CadQuerySketch:
    wire: Any
    plane: SketchPlane


class CadQueryKernel(GeometryKernel):
    """GeometryKernel backed by CadQuery."""

    def __init__(self, cq_module: Any):
        self._cq = cq_module

    @classmethod
    def load(cls) -> "CadQueryKernel":
        """Import CadQuery and return a ready kernel."""
        try:
            cq = importlib.import_module("cadquery")
        except ImportError as e:
            raise KernelUnavailableError(
                "cadquery is not installed; install the 'kernel' extra"
            ) from e
        logger.info("Loaded cadquery %s", getattr(cq, "__version__", "?"))
        return cls(cq)

    @property
    def name(self) -> str:
        return "cadquery"

    def _workplane(self, plane: SketchPlane):
        cq_plane = self._cq.Plane(
            origin=tuple(plane.origin),
            xDir=tuple(plane.x_dir),
            normal=tuple(plane.normal),
        )
        return self._cq.Workplane(cq_plane)

    @_kernel_op("sketch")
    def sketch(self, loop: Sequence[LoopItem], plane: SketchPlane) -> CadQuerySketch:
        items = list(loop)
        if len(items) < 3 or isinstance(items[0], ThreePointArc):
            raise KernelOperationError(f"Cannot sketch a loop of {len(items)} items")
        first = items[0]
        last = items[-1]
        if not isinstance(last, ThreePointArc) and np.allclose(first, last):
            items = items[:-1]
        wp = self._workplane(plane).moveTo(float(first[0]), float(first[1]))
        for item in items[1:]:
            if isinstance(item, ThreePointArc):
                wp = wp.threePointArc(tuple(map(float, item.mid)), tuple(map(float, item.end)))
            else:
                wp = wp.lineTo(float(item[0]), float(item[1]))
        wire = wp.close().val()
        return CadQuerySketch(wire=wire, plane=plane)

    @_kernel_op("extrude")
    def extrude(self, sketch: CadQuerySketch, distance: float) -> Any:
        wp = self._workplane(sketch.plane).add(sketch.wire).toPending()
        return wp.extrude(distance).val()

    @_kernel_op("loft")
    def loft(self, sketches: Sequence[CadQuerySketch], ruled: bool = False) -> Any:
        return self._cq.Solid.makeLoft([s.wire for s in sketches], ruled)

    @_kernel_op("fuse")
    def fuse(self, a: Any, b: Any) -> Any:
        return a.fuse(b).clean()

    @_kernel_op("cut")
    def cut(self, a: Any, b: Any) -> Any:
        return a.cut(b)

    @_kernel_op("box")
    def box(self, min_corner: Vec3, max_corner: Vec3) -> Any:
        lo = np.asarray(min_corner, dtype=float)
        size = np.asarray(max_corner, dtype=float) - lo
        return self._cq.Solid.makeBox(
            float(size[0]), float(size[1]), float(size[2]),
            pnt=self._cq.Vector(*map(float, lo)),
        )

    @_kernel_op("fillet")
    def fillet(self, solid: Any, radius: float, selector: Optional[str] = None) -> Any:
        wp = self._cq.Workplane().add(solid)
        edges = wp.edges(selector).vals() if selector else wp.edges().vals()
        if not edges:
            return solid
        return solid.fillet(radius, edges)

    @_kernel_op("triangulate")
    def triangulate(self, solid: Any, tolerance: float) -> MeshBuffer:
        vertices, triangles = solid.tessellate(tolerance, ANGULAR_TOLERANCE)
        verts = np.array([v.toTuple() for v in vertices], dtype=float).reshape(-1, 3)
        tris = np.array(triangles, dtype=np.int64).reshape(-1, 3)
        return mesh_from_triangles(verts, tris)

    @_kernel_op("export_step")
    def export_step(self, solid: Any) -> bytes:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "part.step")
            self._cq.exporters.export(solid, path, exportType="STEP")
            with open(path, "rb") as f:
                return f.read()
