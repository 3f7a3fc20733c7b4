"""Tests for geometry_primitives module."""
import numpy as np
import pytest

from geometry_primitives import (
    OffsetLoop,
    ProfileDescriptor,
    Station,
    ThreePointArc,
    dedupe_points,
    items_to_points,
    left_normal,
    polygon_from_points,
    ring_is_simple,
    sample_three_point_arc,
    smoothstep,
    unit,
    unit_square_loop,
)


class TestVectorHelpers:
    def test_unit_and_fallback(self):
        np.testing.assert_allclose(unit([3.0, 4.0]), [0.6, 0.8])
        np.testing.assert_allclose(unit([0.0, 0.0]), [0.0, 1.0])

    def test_left_normal_rows(self):
        out = left_normal(np.array([[1.0, 0.0], [0.0, 1.0]]))
        np.testing.assert_allclose(out, [[0.0, 1.0], [-1.0, 0.0]])

    def test_smoothstep(self):
        assert smoothstep(0.0, 10.0, -1.0) == 0.0
        assert smoothstep(0.0, 10.0, 5.0) == pytest.approx(0.5)
        assert smoothstep(0.0, 10.0, 11.0) == 1.0

    def test_dedupe_drops_repeats_and_closing_point(self):
        pts = np.array([[0, 0], [0, 0], [1, 0], [1, 1], [0, 0]], dtype=float)
        np.testing.assert_allclose(dedupe_points(pts), [[0, 0], [1, 0], [1, 1]])


class TestProfileDescriptor:
    def test_lerp(self):
        a = ProfileDescriptor(0.0, 10.0, 0.0, 0.0, -90.0)
        b = ProfileDescriptor(10.0, 20.0, 10.0, 10.0, 90.0)
        mid = a.lerp(b, 0.5)
        assert mid == ProfileDescriptor(5.0, 15.0, 5.0, 5.0, 0.0)

    def test_with_end(self):
        d = ProfileDescriptor().with_end(10.0, 12.0)
        assert (d.end_x, d.end_z) == (10.0, 12.0)
        assert d.end_angle_deg == ProfileDescriptor().end_angle_deg


class TestStationFrame:
    def test_world_round_trip(self):
        station = Station(position=np.array([3.0, 4.0]), tangent=np.array([1.0, 1.0]), length=0.0)
        frame = station.frame
        world = frame.to_world(2.0, 5.0)
        assert world[2] == pytest.approx(5.0)
        assert frame.to_local(world) == pytest.approx((2.0, 5.0))
        assert station.angle_deg == pytest.approx(45.0)

    def test_project_drops_forward_component(self):
        frame = Station(position=np.zeros(2), tangent=np.array([0.0, 1.0]), length=0.0).frame
        np.testing.assert_allclose(frame.project(np.array([1.0, 7.0, 2.0])), [1.0, 0.0, 2.0])


class TestLoops:
    def test_unit_square_ring(self):
        loop = unit_square_loop()
        assert loop.is_fallback
        assert loop.polygon().area == pytest.approx(1.0)
        assert loop.is_simple()

    def test_ring_outer_then_reversed_inner(self):
        loop = OffsetLoop(
            outer=np.array([[0.0, 0.0], [0.0, 10.0]]),
            inner=np.array([[2.0, 0.0], [2.0, 10.0]]),
        )
        ring = loop.ring()
        np.testing.assert_allclose(ring, [[0, 0], [0, 10], [2, 10], [2, 0], [0, 0]])

    def test_self_crossing_ring(self):
        bowtie = np.array([[0, 0], [1, 1], [1, 0], [0, 1]], dtype=float)
        assert not ring_is_simple(bowtie)

    def test_degenerate_polygon_is_empty(self):
        assert polygon_from_points(np.array([[0.0, 0.0], [1.0, 0.0]])).is_empty


class TestArcs:
    def test_three_point_arc_on_circle(self):
        pts = sample_three_point_arc(np.array([1.0, 0.0]), np.array([0.0, 1.0]), np.array([-1.0, 0.0]), 16)
        np.testing.assert_allclose(np.linalg.norm(pts, axis=1), 1.0)
        assert pts[:, 1].min() >= -1e-12

    def test_arc_direction_follows_mid(self):
        pts = sample_three_point_arc(np.array([1.0, 0.0]), np.array([0.0, -1.0]), np.array([-1.0, 0.0]), 16)
        assert pts[:, 1].max() <= 1e-12

    def test_collinear_arc_is_straight(self):
        pts = sample_three_point_arc(np.zeros(2), np.array([1.0, 0.0]), np.array([2.0, 0.0]))
        assert len(pts) == 3

    def test_items_to_points(self):
        items = [(0.0, 0.0), (2.0, 0.0), ThreePointArc(mid=(3.0, 1.0), end=(2.0, 2.0)), (0.0, 2.0)]
        pts = items_to_points(items, arc_samples=8)
        assert len(pts) == 2 + 8 + 1
        np.testing.assert_allclose(pts[-2], [2.0, 2.0])

    def test_arc_cannot_lead(self):
        with pytest.raises(ValueError):
            items_to_points([ThreePointArc(mid=(0.0, 1.0), end=(1.0, 1.0))])
