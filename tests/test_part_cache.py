"""Tests for part_cache module."""
import asyncio
from dataclasses import replace

import pytest

from design_params import DesignParams, PathParams, ToeParams
from mesh_buffers import MeshBuffer
from part_cache import (
    FINGERPRINT_VERSION,
    PART_FIELDS,
    PartCache,
    PartFlags,
    part_fingerprint,
    tolerance_key,
)


class _Counter:
    """Async builder that counts its calls."""

    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return f"solid-{self.calls}"


async def _fake_mesh(solid, tolerance):
    return MeshBuffer.empty()


class TestFingerprint:
    """Part isolation: each part keys only on its own inputs."""

    def test_versioned_and_stable(self):
        a = part_fingerprint("base", DesignParams())
        b = part_fingerprint("base", DesignParams())
        assert a == b
        assert a.startswith(f"base:{FINGERPRINT_VERSION}|")

    def test_all_allow_listed_keys_exist(self):
        flat = DesignParams().flatten()
        for part, keys in PART_FIELDS.items():
            missing = [k for k in keys if k not in flat]
            assert missing == [], part

    def test_toe_change_leaves_base_and_heel_alone(self):
        d0 = DesignParams()
        d1 = replace(d0, toe=replace(d0.toe, a=replace(d0.toe.a, strength=3.0)))
        assert part_fingerprint("base", d0) == part_fingerprint("base", d1)
        assert part_fingerprint("heel", d0) == part_fingerprint("heel", d1)
        assert part_fingerprint("toe", d0) != part_fingerprint("toe", d1)

    def test_anchor_c_change_touches_toe_and_heel(self):
        d0 = DesignParams()
        desc = d0.toe.c.descriptor.with_end(d0.toe.c.descriptor.end_x, 40.0)
        d1 = replace(d0, toe=replace(d0.toe, c=replace(d0.toe.c, descriptor=desc)))
        assert part_fingerprint("base", d0) == part_fingerprint("base", d1)
        assert part_fingerprint("toe", d0) != part_fingerprint("toe", d1)
        assert part_fingerprint("heel", d0) != part_fingerprint("heel", d1)

    def test_path_change_touches_every_part(self):
        d0 = DesignParams()
        d1 = replace(d0, path=PathParams(length=210.0))
        for part in PART_FIELDS:
            assert part_fingerprint(part, d0) != part_fingerprint(part, d1)

    def test_section_cut_never_fingerprinted(self):
        d0 = DesignParams()
        d1 = DesignParams.from_mapping({"sectionCutEnabled": True, "sectionCutY": 50})
        for part in PART_FIELDS:
            assert part_fingerprint(part, d0) == part_fingerprint(part, d1)


class TestToleranceKey:
    def test_rounds_and_clamps(self):
        assert tolerance_key(1.23456) == 1.235
        assert tolerance_key(0.001) == 0.05
        assert tolerance_key(99) == 10.0

    @pytest.mark.parametrize("junk", [None, "abc", float("nan"), float("inf")])
    def test_junk_is_default(self, junk):
        assert tolerance_key(junk) == 1.5


class TestGetOrBuild:
    """Scenario: cache idempotence, freeze and force."""

    def test_second_call_reuses_solid(self):
        cache, build = PartCache(), _Counter()
        design = DesignParams()

        async def go():
            first = await cache.get_or_build("base", design, PartFlags(), build)
            second = await cache.get_or_build("base", design, PartFlags(), build)
            return first, second

        first, second = asyncio.run(go())
        assert build.calls == 1
        assert first.rebuilt and not second.rebuilt
        assert second.solid == first.solid

    def test_changed_input_rebuilds(self):
        cache, build = PartCache(), _Counter()

        async def go():
            await cache.get_or_build("toe", DesignParams(), PartFlags(), build)
            return await cache.get_or_build("toe", DesignParams(toe=ToeParams(thickness=8.0)), PartFlags(), build)

        outcome = asyncio.run(go())
        assert outcome.rebuilt
        assert build.calls == 2

    def test_freeze_ignores_changes(self):
        cache, build = PartCache(), _Counter()

        async def go():
            await cache.get_or_build("toe", DesignParams(), PartFlags(), build)
            changed = DesignParams(toe=ToeParams(thickness=8.0))
            return await cache.get_or_build("toe", changed, PartFlags(freeze=True), build)

        outcome = asyncio.run(go())
        assert not outcome.rebuilt
        assert outcome.solid == "solid-1"

    def test_freeze_with_empty_slot_builds(self):
        cache, build = PartCache(), _Counter()
        outcome = asyncio.run(cache.get_or_build("heel", DesignParams(), PartFlags(freeze=True), build))
        assert outcome.rebuilt
        assert build.calls == 1

    def test_force_always_rebuilds(self):
        cache, build = PartCache(), _Counter()
        design = DesignParams()

        async def go():
            await cache.get_or_build("heel", design, PartFlags(), build)
            return await cache.get_or_build("heel", design, PartFlags(force=True), build)

        outcome = asyncio.run(go())
        assert outcome.rebuilt
        assert outcome.solid == "solid-2"

    def test_failed_build_keeps_previous_slot(self):
        cache, build = PartCache(), _Counter()

        async def boom():
            raise RuntimeError("kernel exploded")

        async def go():
            await cache.get_or_build("base", DesignParams(), PartFlags(), build)
            with pytest.raises(RuntimeError):
                await cache.get_or_build("base", DesignParams(), PartFlags(force=True), boom)

        asyncio.run(go())
        assert cache.get("base").solid == "solid-1"

    def test_invalidate(self):
        cache, build = PartCache(), _Counter()
        asyncio.run(cache.get_or_build("base", DesignParams(), PartFlags(), build))
        cache.invalidate("base")
        assert cache.get("base") is None


class TestGetOrMesh:
    def test_mesh_reused_at_same_quantized_tolerance(self):
        cache = PartCache()
        meshes = []

        async def mesh(solid, tol):
            meshes.append(tol)
            return MeshBuffer.empty()

        async def go():
            await cache.get_or_build("base", DesignParams(), PartFlags(), _Counter())
            a = await cache.get_or_mesh("base", 1.5, mesh)
            b = await cache.get_or_mesh("base", 1.5001, mesh)
            c = await cache.get_or_mesh("base", 0.5, mesh)
            return a, b, c

        a, b, c = asyncio.run(go())
        assert a.rebuilt and not b.rebuilt and c.rebuilt
        assert b.mesh is a.mesh
        assert meshes == [1.5, 0.5]
        assert a.key.endswith("|tol=1.5")

    def test_rebuild_drops_mesh(self):
        cache = PartCache()

        async def go():
            await cache.get_or_build("base", DesignParams(), PartFlags(), _Counter())
            await cache.get_or_mesh("base", 1.5, _fake_mesh)
            await cache.get_or_build("base", DesignParams(), PartFlags(force=True), _Counter())
            return await cache.get_or_mesh("base", 1.5, _fake_mesh)

        assert asyncio.run(go()).rebuilt

    def test_missing_solid(self):
        with pytest.raises(KeyError):
            asyncio.run(PartCache().get_or_mesh("toe", 1.0, _fake_mesh))
