"""Tests for profile_synth module."""
import numpy as np
import pytest

from geometry_primitives import ProfileDescriptor, left_normal, ring_is_simple
from profile_synth import (
    PROFILE_SAMPLES,
    bezier_points,
    bezier_tangents,
    build_offset_loop,
    capped_loop,
    clip_loop_horizontal,
    collapse_self_crossings,
    control_polygon,
    inward_sign,
    normal_cap_loop,
    profile_endpoints,
    wall_thickness,
)

DEFAULT = ProfileDescriptor(50.0, 35.0, 25.0, 35.0, -120.0)


class TestControlPolygon:
    """Bezier control points and handle clamping."""

    def test_endpoints_and_vertical_start(self):
        ctrl = control_polygon(DEFAULT)
        np.testing.assert_allclose(ctrl[0], [0.0, 0.0])
        np.testing.assert_allclose(ctrl[3], [50.0, 35.0])
        assert ctrl[1][0] == 0.0

    def test_handles_clamped_to_endpoint_box(self):
        ctrl = control_polygon(ProfileDescriptor(20.0, 10.0, 500.0, 500.0, 45.0))
        for p in ctrl:
            assert 0.0 <= p[0] <= 20.0
            assert 0.0 <= p[1] <= 10.0


class TestBuildOffsetLoop:
    """Scenario: default anchor profile."""

    def test_shape_and_pins(self):
        loop = build_offset_loop(DEFAULT, 12.0)
        assert not loop.is_fallback
        assert len(loop.outer) == PROFILE_SAMPLES
        assert len(loop.inner) == len(loop.outer)
        np.testing.assert_allclose(loop.outer[0], [0.0, 0.0])
        assert loop.inner[0][1] == 0.0

    def test_ring_is_closed_and_simple(self):
        loop = build_offset_loop(DEFAULT, 12.0)
        ring = loop.ring()
        np.testing.assert_allclose(ring[0], ring[-1])
        assert ring_is_simple(ring[:-1])
        assert loop.polygon().is_valid
        assert loop.polygon().area > 0

    def test_ring_has_no_duplicate_neighbours(self):
        ring = build_offset_loop(DEFAULT, 12.0).ring(closed=False)
        gaps = np.linalg.norm(np.diff(ring, axis=0), axis=1)
        assert np.all(gaps > 1e-6)

    @pytest.mark.parametrize("thickness", [2.0, 6.0, 12.0])
    def test_inward_sign_takes_offset_nearer_chord_midpoint(self, thickness):
        ctrl = control_polygon(DEFAULT)
        mid = bezier_points(ctrl, np.array([0.5]))[0]
        normal = left_normal(bezier_tangents(ctrl, np.array([0.5]))[0])
        chord_mid = 0.5 * (ctrl[0] + ctrl[3])
        sign = inward_sign(ctrl, thickness)
        chosen = np.linalg.norm(mid + normal * sign * thickness - chord_mid)
        other = np.linalg.norm(mid - normal * sign * thickness - chord_mid)
        assert sign == 1.0
        assert chosen <= other
        assert build_offset_loop(DEFAULT, thickness).inward_sign == sign

    def test_thickness_clamped_to_span(self):
        small = ProfileDescriptor(3.0, 4.0, 1.0, 1.0, -120.0)
        assert wall_thickness(small, 50.0) == pytest.approx(5.0 * 0.45)
        assert wall_thickness(small, 0.01) == pytest.approx(0.2)

    def test_non_finite_descriptor_gives_unit_square(self):
        loop = build_offset_loop(ProfileDescriptor(float("nan"), 10.0, 1.0, 1.0, 0.0), 5.0)
        assert loop.is_fallback
        np.testing.assert_allclose(loop.ring(closed=False), [[0, 0], [1, 0], [1, 1], [0, 1]])

    @pytest.mark.parametrize("angle", range(-180, 181, 5))
    def test_default_handles_close_at_every_end_angle(self, angle):
        desc = ProfileDescriptor(50.0, 35.0, 25.0, 35.0, float(angle))
        loop = build_offset_loop(desc, 12.0)
        ring = loop.ring()
        assert not loop.is_fallback
        np.testing.assert_allclose(ring[0], ring[-1])
        assert ring_is_simple(ring[:-1])


class TestProfileEndpoints:
    """Endpoint metadata must agree with the full loop."""

    @pytest.mark.parametrize("desc", [
        DEFAULT,
        ProfileDescriptor(20.0, 50.0, 30.0, 30.0, -150.0),
        ProfileDescriptor(60.0, 40.0, 25.0, 20.0, -135.0),
    ])
    def test_matches_loop(self, desc):
        ends = profile_endpoints(desc, 8.0)
        loop = build_offset_loop(desc, 8.0)
        np.testing.assert_allclose(ends.outer, loop.outer_end, atol=1e-9)
        np.testing.assert_allclose(ends.inner, loop.inner_end, atol=1e-9)
        assert ends.inward_sign == loop.inward_sign


class TestCollapseSelfCrossings:
    """Offset loop removal keeps the point count."""

    def test_loop_replaced_by_crossing(self):
        pts = np.array([[0, 0], [4, 0], [4, 2], [2, 2], [2, -2], [6, -2]], dtype=float)
        out = collapse_self_crossings(pts)
        assert len(out) == len(pts)
        np.testing.assert_allclose(out[1], [2.0, 0.0])
        np.testing.assert_allclose(out[-1], [6.0, -2.0])


class TestClippedVariants:
    """Heel clip variants."""

    def test_horizontal_clip_height(self):
        loop = clip_loop_horizontal(build_offset_loop(DEFAULT, 8.0), 20.0)
        assert len(loop.outer) == len(loop.inner) == PROFILE_SAMPLES
        assert loop.outer[:, 1].max() == pytest.approx(20.0)
        assert loop.inner[:, 1].max() <= 20.0 + 1e-9
        assert ring_is_simple(loop.ring(closed=False))

    def test_clip_above_profile_is_noop(self):
        base = build_offset_loop(DEFAULT, 8.0)
        assert clip_loop_horizontal(base, 500.0) is base

    def test_normal_cap(self):
        base = build_offset_loop(DEFAULT, 8.0)
        loop = normal_cap_loop(base, 20.0)
        assert len(loop.outer) == len(loop.inner)
        assert loop.outer[-1][1] == pytest.approx(20.0)
        # Cap follows the outer normal, not the horizontal.
        cap = loop.inner[-1] - loop.outer[-1]
        tangent = loop.outer[-1] - loop.outer[-2]
        assert abs(np.dot(cap, tangent)) / (np.linalg.norm(cap) * np.linalg.norm(tangent)) < 0.1

    def test_capped_loop_dispatch(self):
        horizontal = capped_loop(DEFAULT, 8.0, 15.0, normal_cap=False)
        assert horizontal.inner[-1][1] == pytest.approx(15.0)
