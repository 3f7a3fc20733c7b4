"""
Spine sampling.

The spine is a uniform Catmull-Rom spline through four control points,
padded at both ends (``[p0, p0, p1, p2, p3, p3]``) so it interpolates its
endpoints. Each of the three segments is sampled at a fixed resolution;
neighbouring segments share their boundary sample. Tangents come from the
analytic derivative, cumulative arc lengths from the sampled chords.
"""
import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from design_params import PathParams
from geometry_primitives import Station, clamp, unit, unit_rows

logger = logging.getLogger(__name__)

SAMPLES_PER_SEGMENT = 80
MIN_SAMPLES = 4


class PathSamplingError(ValueError):
    """Raised when sampling yields too few points to define a path."""


def control_points(params: PathParams) -> np.ndarray:
    """Four spine control points derived from length, percentages and x offsets."""
    length = params.length
    p3y = clamp(length * params.heel_pct / 100.0, 1.0, length - 0.001)
    p2y = clamp(p3y * params.toe_pct / 100.0, 0.001, p3y - 0.001)
    return np.array([
        [0.0, 0.0],
        [params.p2x, p2y],
        [params.p3x, p3y],
        [params.p4x, length],
    ])


def catmull_rom(p0, p1, p2, p3, t: np.ndarray) -> np.ndarray:
    t = np.asarray(t, dtype=float)[:, None]
    t2 = t * t
    t3 = t2 * t
    return 0.5 * (
        2.0 * p1
        + (-p0 + p2) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t3
    )


def catmull_rom_derivative(p0, p1, p2, p3, t: np.ndarray) -> np.ndarray:
    t = np.asarray(t, dtype=float)[:, None]
    t2 = t * t
    return 0.5 * (
        (-p0 + p2)
        + 2.0 * (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t
        + 3.0 * (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t2
    )


@dataclass(eq=False)
class SampledPath:
    """Dense spine samples with unit tangents and cumulative arc length."""

    points: np.ndarray      # (N, 2)
    tangents: np.ndarray    # (N, 2) unit
    cumulative: np.ndarray  # (N,) non-decreasing, starts at 0
    controls: np.ndarray    # (4, 2)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def last_index(self) -> int:
        return len(self.points) - 1

    @property
    def total_length(self) -> float:
        return float(self.cumulative[-1])

    def index_at_length(self, target: float) -> int:
        """First sample whose cumulative length reaches *target* (clamped)."""
        idx = int(np.searchsorted(self.cumulative, target, side="left"))
        return min(max(idx, 0), self.last_index)

    def arc_length_between(self, i0: int, i1: int) -> float:
        return float(self.cumulative[i1] - self.cumulative[i0])

    def station_at_index(self, i: int) -> Station:
        i = min(max(int(i), 0), self.last_index)
        return Station(
            position=self.points[i].copy(),
            tangent=self.tangents[i].copy(),
            length=float(self.cumulative[i]),
            index=i,
        )

    def eval_at_length(self, i0: int, i1: int, target: float) -> Station:
        """Interpolated station *target* mm past sample *i0*, within [i0, i1].

        Position is linear between the bracketing samples; the tangent is the
        renormalized interpolation of their tangents.
        """
        if i1 <= i0:
            return self.station_at_index(i0)
        base = float(self.cumulative[i0])
        span = float(self.cumulative[i1]) - base
        absolute = base + clamp(target, 0.0, span)
        window = self.cumulative[i0:i1 + 1]
        k = i0 + int(np.searchsorted(window, absolute, side="left"))
        k = min(max(k, i0 + 1), i1)
        seg = float(self.cumulative[k] - self.cumulative[k - 1])
        t = (absolute - float(self.cumulative[k - 1])) / seg if seg > 1e-12 else 0.0
        t = clamp(t, 0.0, 1.0)
        position = self.points[k - 1] + (self.points[k] - self.points[k - 1]) * t
        tangent = unit(self.tangents[k - 1] + (self.tangents[k] - self.tangents[k - 1]) * t)
        return Station(position=position, tangent=tangent, length=absolute)

    def station_at_length(self, target: float) -> Station:
        return self.eval_at_length(0, self.last_index, target)

    def stations_between(self, i0: int, i1: int, count: int) -> List[Station]:
        """*count* stations evenly spaced in arc length from sample i0 to i1.

        The two end stations are the exact samples; the rest are interpolated.
        """
        count = max(2, int(count))
        span = self.arc_length_between(i0, i1)
        stations = [self.station_at_index(i0)]
        for j in range(1, count - 1):
            stations.append(self.eval_at_length(i0, i1, span * j / (count - 1)))
        stations.append(self.station_at_index(i1))
        return stations


def sample_path(params: PathParams, samples_per_segment: int = SAMPLES_PER_SEGMENT) -> SampledPath:
    """Sample the padded Catmull-Rom spine defined by *params*."""
    ctrl = control_points(params)
    padded = np.vstack([ctrl[:1], ctrl, ctrl[-1:]])

    point_chunks = []
    tangent_chunks = []
    for seg in range(3):
        p0, p1, p2, p3 = padded[seg:seg + 4]
        ts = np.linspace(0.0, 1.0, max(samples_per_segment, 0) + 1)
        if seg > 0:
            ts = ts[1:]
        point_chunks.append(catmull_rom(p0, p1, p2, p3, ts))
        tangent_chunks.append(catmull_rom_derivative(p0, p1, p2, p3, ts))

    points = np.vstack(point_chunks)
    if len(points) < MIN_SAMPLES:
        raise PathSamplingError(
            f"Path sampling produced {len(points)} points, need at least {MIN_SAMPLES}"
        )

    raw_tangents = np.vstack(tangent_chunks)
    tangents = unit_rows(raw_tangents)
    degenerate = np.linalg.norm(tangents, axis=1) < 0.5
    tangents[degenerate] = (0.0, 1.0)

    chords = np.linalg.norm(np.diff(points, axis=0), axis=1)
    cumulative = np.concatenate([[0.0], np.cumsum(chords)])

    logger.debug(
        "Sampled path: %d points, length %.2f mm (nominal %.1f)",
        len(points), cumulative[-1], params.length,
    )
    return SampledPath(points=points, tangents=tangents, cumulative=cumulative, controls=ctrl)
