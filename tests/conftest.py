"""
Shared test fixtures for the foot-hook pipeline tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from design_params import DesignParams, PathParams
from geometry_kernel import GeometryKernel, KernelOperationError, SketchPlane
from geometry_primitives import ThreePointArc, items_to_points
from mesh_buffers import MeshBuffer, mesh_from_triangles
from path_sampler import sample_path


class FakeSolid:
    """Stand-in solid: a labelled cloud of world points."""

    def __init__(self, label, points):
        self.label = label
        self.points = np.asarray(points, dtype=float).reshape(-1, 3)

    def __repr__(self):
        return f"FakeSolid({self.label}, {len(self.points)} pts)"


class FakeKernel(GeometryKernel):
    """Deterministic in-memory kernel recording every call.

    Fillets fail for any radius listed in ``failing_radii`` (or all radii
    when ``fail_all_fillets`` is set).
    """

    def __init__(self):
        self.calls = []
        self.failing_radii = set()
        self.fail_all_fillets = False

    @property
    def name(self):
        return "fake"

    def sketch(self, loop, plane: SketchPlane):
        self.calls.append("sketch")
        items = list(loop)
        if any(isinstance(i, ThreePointArc) for i in items):
            pts = items_to_points(items, arc_samples=4)
        else:
            pts = np.array(items, dtype=float)
        return plane.to_world(pts)

    def extrude(self, sketch, distance):
        self.calls.append("extrude")
        return FakeSolid("extrude", np.vstack([sketch, sketch + [0.0, 0.0, distance]]))

    def loft(self, sketches, ruled=False):
        self.calls.append("loft")
        return FakeSolid(f"loft[{len(sketches)}]", np.vstack(list(sketches)))

    def fuse(self, a, b):
        self.calls.append("fuse")
        return FakeSolid(f"({a.label}+{b.label})", np.vstack([a.points, b.points]))

    def cut(self, a, b):
        self.calls.append("cut")
        return FakeSolid(f"({a.label}-{b.label})", a.points)

    def box(self, min_corner, max_corner):
        self.calls.append("box")
        return FakeSolid("box", np.array([min_corner, max_corner], dtype=float))

    def fillet(self, solid, radius, selector=None):
        self.calls.append(f"fillet:{radius:g}")
        if self.fail_all_fillets or round(radius, 6) in self.failing_radii:
            raise KernelOperationError(f"fillet r={radius:g} failed")
        return FakeSolid(f"fillet({solid.label})", solid.points)

    def triangulate(self, solid, tolerance):
        self.calls.append("triangulate")
        pts = solid.points
        if len(pts) < 3:
            return MeshBuffer.empty()
        tris = [(0, i, i + 1) for i in range(1, len(pts) - 1)]
        return mesh_from_triangles(pts, tris, with_normals=False)

    def export_step(self, solid):
        self.calls.append("export_step")
        return f"ISO-10303-21; {solid.label}".encode()


@pytest.fixture
def fake_kernel():
    return FakeKernel()


@pytest.fixture
def default_design():
    return DesignParams()


@pytest.fixture
def default_path():
    """Sampled spine for the default 195 mm path."""
    return sample_path(PathParams())
