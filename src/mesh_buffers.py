"""
Flat triangle buffers for the preview and STL output.

A MeshBuffer holds ``positions`` (3 floats per vertex), optional
``normals`` and ``indices`` (3 per triangle), the layout the front-end
viewer consumes directly.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
import trimesh
from trimesh.exchange.stl import export_stl


@dataclass(eq=False)
class MeshBuffer:
    positions: np.ndarray                 # (3V,) float32
    indices: np.ndarray                   # (3F,) uint32
    normals: Optional[np.ndarray] = None  # (3V,) float32

    @classmethod
    def empty(cls) -> "MeshBuffer":
        return cls(
            positions=np.zeros(0, dtype=np.float32),
            indices=np.zeros(0, dtype=np.uint32),
            normals=None,
        )

    @property
    def vertex_count(self) -> int:
        return len(self.positions) // 3

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0

    def to_message(self) -> Dict[str, Any]:
        return {
            "positions": self.positions.tolist(),
            "indices": self.indices.tolist(),
            "normals": None if self.normals is None else self.normals.tolist(),
        }

    def tobytes(self) -> bytes:
        normals = b"" if self.normals is None else self.normals.tobytes()
        return self.positions.tobytes() + self.indices.tobytes() + normals


def mesh_from_triangles(vertices, triangles, with_normals: bool = True) -> MeshBuffer:
    """Build a buffer from (V, 3) vertices and (F, 3) triangle indices."""
    verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    faces = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    normals = None
    if with_normals and len(faces):
        mesh = trimesh.Trimesh(vertices=verts, faces=faces, process=False)
        normals = np.asarray(mesh.vertex_normals, dtype=np.float32).reshape(-1)
    return MeshBuffer(
        positions=verts.astype(np.float32).reshape(-1),
        indices=faces.astype(np.uint32).reshape(-1),
        normals=normals,
    )


def merge_mesh_buffers(buffers: Sequence[MeshBuffer]) -> MeshBuffer:
    """Concatenate buffers, rebasing indices. Normals survive only if every
    input has them."""
    parts = [b for b in buffers if b is not None]
    if not parts:
        return MeshBuffer.empty()
    offsets = np.cumsum([0] + [b.vertex_count for b in parts[:-1]])
    positions = np.concatenate([b.positions for b in parts]).astype(np.float32)
    indices = np.concatenate([
        b.indices.astype(np.uint32) + np.uint32(off) for b, off in zip(parts, offsets)
    ]).astype(np.uint32)
    normals = None
    if all(b.normals is not None for b in parts):
        normals = np.concatenate([b.normals for b in parts]).astype(np.float32)
    return MeshBuffer(positions=positions, indices=indices, normals=normals)


def mesh_to_trimesh(buffer: MeshBuffer) -> trimesh.Trimesh:
    return trimesh.Trimesh(
        vertices=buffer.positions.reshape(-1, 3).astype(np.float64),
        faces=buffer.indices.reshape(-1, 3).astype(np.int64),
        process=False,
    )


def mesh_to_stl_bytes(buffer: MeshBuffer) -> bytes:
    """Binary STL."""
    return export_stl(mesh_to_trimesh(buffer))
