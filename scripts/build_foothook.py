#!/usr/bin/env python3
"""Build or export the foot hook from a parameter file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from build_worker import BuildOrchestrator, KernelLoader
from cadquery_kernel import CadQueryKernel
from design_params import DesignParams
from part_builders import toe_sections
from path_sampler import sample_path
from protocol import PARTS, ErrorResult, FileResult, MeshResult, Status

logger = logging.getLogger("build_foothook")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build the foot hook solid and export STEP / STL / DXF"
    )
    parser.add_argument("--params", help="JSON file of UI parameter ids → values")
    parser.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override one parameter (repeatable), e.g. --set bp_len=210",
    )
    parser.add_argument(
        "--format",
        choices=["step", "stl", "dxf", "preview"],
        default="step",
        help="Export format; 'preview' only meshes and reports",
    )
    parser.add_argument("--out", help="Output path (defaults to the export's own filename)")
    parser.add_argument(
        "--parts",
        default=",".join(PARTS),
        help="Comma-separated parts to include (base,toe,heel)",
    )
    parser.add_argument(
        "--tolerance", type=float, default=1.5, help="Preview mesh tolerance in mm"
    )
    parser.add_argument(
        "--fit-report",
        action="store_true",
        help="Print the toe rail fit error at every station and exit",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def load_params(path: str | None, overrides: list[str]) -> dict:
    params: dict = {}
    if path:
        params.update(json.loads(Path(path).read_text()))
    for item in overrides:
        key, sep, value = item.partition("=")
        if not sep:
            raise SystemExit(f"--set expects KEY=VALUE, got {item!r}")
        params[key.strip()] = value.strip()
    return params


def print_fit_report(params: dict) -> None:
    design = DesignParams.from_mapping(params)
    sections = toe_sections(sample_path(design.path), design)
    print(f"{'length':>9}  {'end_x':>8}  {'end_z':>8}  {'angle':>8}  {'error':>10}")
    for s in sections:
        d = s.descriptor
        print(
            f"{s.station.length:9.2f}  {d.end_x:8.2f}  {d.end_z:8.2f}  "
            f"{d.end_angle_deg:8.2f}  {s.fit_error:10.3g}"
        )


async def run(args: argparse.Namespace, params: dict) -> int:
    responses: list = []

    def post(response) -> None:
        responses.append(response)
        if isinstance(response, Status):
            logger.info(response.text)

    kernels = KernelLoader(CadQueryKernel.load)
    orchestrator = BuildOrchestrator(kernels, post)

    enabled = {p.strip() for p in args.parts.split(",") if p.strip()}
    payload = {"params": params, "parts": {p: p in enabled for p in PARTS}}
    if args.format == "preview":
        payload["tolerance"] = args.tolerance
        message = {"type": "build", "payload": payload}
    else:
        payload["format"] = args.format
        message = {"type": "export", "payload": payload}

    await orchestrator.handle(message)

    for response in responses:
        if isinstance(response, ErrorResult):
            logger.error(response.text)
            return 1
        if isinstance(response, MeshResult):
            mesh = response.mesh
            print(f"preview: {mesh.vertex_count} vertices, {mesh.triangle_count} triangles")
        if isinstance(response, FileResult):
            out = Path(args.out or response.filename)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(response.data)
            print(f"wrote {out} ({len(response.data)} bytes, {response.mime_type})")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    params = load_params(args.params, args.set)
    if args.fit_report:
        print_fit_report(params)
        return 0
    return asyncio.run(run(args, params))


if __name__ == "__main__":
    sys.exit(main())
