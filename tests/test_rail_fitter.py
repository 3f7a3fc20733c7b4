"""Tests for rail_fitter module."""
import numpy as np
import pytest

from design_params import DesignParams, ToeParams
from geometry_primitives import ProfileDescriptor, Station
from part_builders import toe_layout, toe_sections
from profile_synth import profile_endpoints
from rail_fitter import (
    COARSE_SAMPLES,
    REFINE_PASSES,
    REFINE_SAMPLES,
    RailAnchor,
    build_rails,
    hermite,
    inner_fit_error,
    leading_edge_shrink,
    make_anchor,
    oriented_start_normal,
    rail_tangents,
    search_end_angle,
    fit_rail_sections,
)


def _station(x=0.0, y=0.0, length=0.0):
    return Station(position=np.array([x, y]), tangent=np.array([0.0, 1.0]), length=length)


class TestHermite:
    def test_endpoints(self):
        p0, p1 = np.array([0.0, 0.0, 0.0]), np.array([10.0, 5.0, 2.0])
        m = np.array([1.0, 1.0, 1.0])
        np.testing.assert_allclose(hermite(p0, m, p1, m, 0.0), p0)
        np.testing.assert_allclose(hermite(p0, m, p1, m, 1.0), p1)


class TestRailTangents:
    def test_interior_uses_neighbour_chord(self):
        pts = [np.array([0.0, 0.0, 0.0]), np.array([10.0, 0.0, 0.0]), np.array([20.0, 10.0, 0.0])]
        tangents = rail_tangents(pts, [1.0, 2.0, 1.0], np.array([0.0, 0.0, 1.0]))
        np.testing.assert_allclose(tangents[1], (pts[2] - pts[0]) * 0.25)
        np.testing.assert_allclose(tangents[2], (pts[2] - pts[1]) * 0.5)

    def test_first_tangent_blends_chord_and_normal(self):
        pts = [np.array([0.0, 0.0, 0.0]), np.array([10.0, 0.0, 0.0])]
        t0 = rail_tangents(pts, [1.0, 1.0], np.array([0.0, 0.0, -1.0]))[0]
        assert np.linalg.norm(t0) == pytest.approx(3.0)
        # Normal is taken as given.
        assert t0[0] > 0
        assert t0[2] < 0

    def test_strength_clamped(self):
        pts = [np.zeros(3), np.array([10.0, 0.0, 0.0]), np.array([20.0, 0.0, 0.0])]
        loose = rail_tangents(pts, [1.0, 100.0, 1.0], np.zeros(3))
        np.testing.assert_allclose(loose[1], (pts[2] - pts[0]) * 0.5 / 8.0)


class TestBuildRails:
    """Both rails leave the first anchor on the same side."""

    def _anchor(self, length, outer, inner):
        return RailAnchor(
            station=_station(y=length, length=length),
            descriptor=ProfileDescriptor(),
            strength=1.0,
            outer=np.array(outer, dtype=float),
            inner=np.array(inner, dtype=float),
            end_normal=np.array([1.0, 0.0, 0.0]),
        )

    def test_start_normal_shared_by_both_rails(self):
        # Outer chord agrees with the normal, inner chord opposes it.
        anchors = [
            self._anchor(0.0, [0.0, 0.0, 0.0], [0.0, 0.0, -5.0]),
            self._anchor(10.0, [1.0, 10.0, 0.0], [-1.0, 10.0, -5.0]),
        ]
        np.testing.assert_allclose(oriented_start_normal(anchors), [1.0, 0.0, 0.0])
        outer, inner = build_rails(anchors)
        normal = anchors[0].end_normal
        assert outer.tangents[0] @ normal > 0
        assert inner.tangents[0] @ normal > 0

    def test_start_normal_flipped_against_outer_chord(self):
        anchors = [
            self._anchor(0.0, [0.0, 0.0, 0.0], [0.0, 0.0, -5.0]),
            self._anchor(10.0, [-1.0, 10.0, 0.0], [1.0, 10.0, -5.0]),
        ]
        np.testing.assert_allclose(oriented_start_normal(anchors), [-1.0, 0.0, 0.0])
        outer, inner = build_rails(anchors)
        assert outer.tangents[0][0] < 0
        assert inner.tangents[0][0] < 0


class TestSearchEndAngle:
    """Scenario: synthetic reachable target."""

    def test_recovers_reachable_target(self):
        station = _station()
        frame = station.frame
        truth = ProfileDescriptor(60.0, 40.0, 25.0, 20.0, -135.0)
        target = frame.to_world(*profile_endpoints(truth, 8.0).inner)
        base = ProfileDescriptor(60.0, 40.0, 25.0, 20.0, -110.0)

        angle, err, evals = search_end_angle(inner_fit_error(frame, base, 8.0, target), -110.0)

        assert err < 1e-6
        assert angle == pytest.approx(-135.0, abs=0.05)
        assert evals <= COARSE_SAMPLES + REFINE_PASSES * REFINE_SAMPLES + 3

    def test_exact_centre_kept(self):
        frame = _station().frame
        desc = ProfileDescriptor(50.0, 35.0, 25.0, 35.0, -120.0)
        target = frame.to_world(*profile_endpoints(desc, 12.0).inner)
        angle, err, _ = search_end_angle(inner_fit_error(frame, desc, 12.0, target), -120.0)
        assert angle == pytest.approx(-120.0, abs=1e-9)
        assert err < 1e-18


class TestLeadingEdgeShrink:
    def test_full_at_start_zero_past_band(self):
        assert leading_edge_shrink(0.0, 4.0, 10.0) == pytest.approx(4.0)
        assert leading_edge_shrink(10.0, 4.0, 10.0) == pytest.approx(0.0)
        assert 0.0 < leading_edge_shrink(5.0, 4.0, 10.0) < 4.0

    def test_disabled(self):
        assert leading_edge_shrink(0.0, 0.0, 10.0) == 0.0


class TestFitRailSections:
    """Scenario: default toe fit."""

    def test_anchor_stations_fit_exactly(self, default_path):
        design = DesignParams()
        layout = toe_layout(default_path, design.toe)
        sections = toe_sections(default_path, design)

        assert len(sections) == (design.toe.mid_ab + 2) + (design.toe.mid_bc + 2) - 1
        by_length = {round(s.station.length, 9): s for s in sections}
        for idx in (layout.index_a, layout.index_b, layout.index_c):
            section = by_length[round(float(default_path.cumulative[idx]), 9)]
            assert section.fit_error < 1e-9

    def test_stations_ordered_and_descriptors_in_range(self, default_path):
        sections = toe_sections(default_path, DesignParams())
        lengths = [s.station.length for s in sections]
        assert lengths == sorted(lengths)
        for s in sections:
            assert s.descriptor == s.descriptor.clamped()
            assert np.isfinite(s.fit_error)
            assert len(s.loop.outer) == len(s.loop.inner)

    def test_anchor_descriptor_reproduced(self, default_path):
        design = DesignParams()
        sections = toe_sections(default_path, design)
        first = sections[0].descriptor
        a = design.toe.a.descriptor
        assert first.end_x == pytest.approx(a.end_x, abs=1e-9)
        assert first.end_z == pytest.approx(a.end_z, abs=1e-9)
        assert first.end_angle_deg == pytest.approx(a.end_angle_deg, abs=1e-9)

    def test_without_profile_b(self, default_path):
        design = DesignParams(toe=ToeParams(profile_b_enabled=False))
        layout = toe_layout(default_path, design.toe)
        sections = toe_sections(default_path, design)
        assert len(sections) == len(layout.stations)
        assert sections[0].fit_error < 1e-9
        assert sections[-1].fit_error < 1e-9

    def test_leading_edge_shrink_lowers_first_station(self, default_path):
        plain = toe_sections(default_path, DesignParams())
        shrunk = toe_sections(default_path, DesignParams(toe=ToeParams(lead_shrink=5.0, lead_band=30.0)))
        assert shrunk[0].descriptor.end_z == pytest.approx(plain[0].descriptor.end_z - 5.0)
        assert shrunk[-1].descriptor.end_z == pytest.approx(plain[-1].descriptor.end_z)

    def test_identical_anchors_on_straight_path_fit_everywhere(self):
        # Rails are translates of each other, so the anchor profile fits at
        # every intermediate station.
        desc = ProfileDescriptor(50.0, 35.0, 25.0, 35.0, -120.0)
        anchors = [make_anchor(_station(y=y, length=y), desc, 1.0, 12.0) for y in (0.0, 40.0, 80.0)]
        stations = [_station(y=float(y), length=float(y)) for y in range(0, 81, 5)]

        sections = fit_rail_sections(anchors, stations, 12.0)

        assert len(sections) == len(stations)
        for s in sections:
            assert s.fit_error < 1e-9
            assert s.descriptor.end_angle_deg == pytest.approx(-120.0)

    def test_needs_two_anchors(self, default_path):
        station = default_path.station_at_index(0)
        anchor = make_anchor(station, ProfileDescriptor(), 1.0, 12.0)
        with pytest.raises(ValueError):
            fit_rail_sections([anchor], [station], 12.0)
