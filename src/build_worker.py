"""
Build orchestration and the worker message loop.

BuildOrchestrator turns one request into responses: it loads the kernel
once (shared by concurrent callers), builds or reuses each enabled part
through the PartCache, merges the part meshes into one preview buffer, and
serializes exports. Every failure becomes an error response; nothing
escapes ``handle``.

BuildWorker feeds requests to the orchestrator one at a time. When several
build requests are waiting, only the newest one runs; pings and exports are
never dropped.
"""
import asyncio
import functools
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from baseplate import plan_baseplate
from design_params import DesignParams
from dxf_exporter import baseplate_to_dxf_bytes
from geometry_kernel import EXPORT_STL_TOLERANCE, GeometryKernel
from mesh_buffers import MeshBuffer, merge_mesh_buffers
from part_builders import apply_section_cut, build_part
from part_cache import PartCache, PartFlags, tolerance_key
from path_sampler import sample_path
from protocol import (
    PARTS,
    BuildRequest,
    ErrorResult,
    ExportRequest,
    FileResult,
    MeshResult,
    PingRequest,
    Pong,
    ProtocolError,
    Response,
    Status,
    parse_request,
)

logger = logging.getLogger(__name__)


def error_text(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class KernelLoader:
    """Memoized, concurrency-safe kernel initialization.

    The first caller starts loading; everyone else awaits the same task. A
    failed load is forgotten so the next request retries.
    """

    def __init__(self, factory: Callable[[], GeometryKernel]):
        self._factory = factory
        self._task: Optional[asyncio.Future] = None

    async def get(self, report: Optional[Callable[[str], None]] = None) -> GeometryKernel:
        if self._task is None:
            if report:
                report("loading kernel...")
            loop = asyncio.get_running_loop()
            self._task = loop.run_in_executor(None, self._factory)
        task = self._task
        try:
            kernel = await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            raise
        return kernel


class BuildOrchestrator:
    def __init__(
        self,
        kernels: KernelLoader,
        post: Callable[[Response], None],
        cache: Optional[PartCache] = None,
    ):
        self._kernels = kernels
        self.post = post
        self.cache = cache if cache is not None else PartCache()

    def _status(self, text: str) -> None:
        self.post(Status(text))

    async def _run(self, fn: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def handle(self, message: Any) -> None:
        """Process one message; failures are posted, never raised."""
        try:
            request = parse_request(message)
            if isinstance(request, PingRequest):
                self.post(Pong())
            elif isinstance(request, BuildRequest):
                await self.build(request)
            elif isinstance(request, ExportRequest):
                await self.export(request)
        except Exception as e:
            logger.exception("Request failed")
            self.post(ErrorResult(error_text(e)))

    # ─── Build ───────────────────────────────────────────────────────────────

    async def _part_solid(self, kernel: GeometryKernel, part: str, design: DesignParams, flags: PartFlags):
        async def build():
            self._status(f"building {part}...")
            return await self._run(build_part, kernel, part, design)
        return await self.cache.get_or_build(part, design, flags, build)

    async def build(self, request: BuildRequest) -> None:
        design = DesignParams.from_mapping(request.params)
        enabled = request.enabled_parts()
        tol = tolerance_key(request.tolerance)

        if not enabled:
            self.post(MeshResult(MeshBuffer.empty()))
            self._status("ready (nothing enabled)")
            return

        kernel = await self._kernels.get(self._status)
        summary: Dict[str, str] = {p: "off" for p in PARTS}
        meshes: List[MeshBuffer] = []
        solids = []
        for part in enabled:
            outcome = await self._part_solid(kernel, part, design, request.flags.get(part, PartFlags()))
            solids.append(outcome.solid)
            if design.section_cut.enabled:
                summary[part] = "rebuilt" if outcome.rebuilt else "cached"
                continue

            async def mesh(solid, t, part=part):
                self._status(f"meshing {part}... (tol={t})")
                return await self._run(kernel.triangulate, solid, t)

            meshed = await self.cache.get_or_mesh(part, tol, mesh)
            meshes.append(meshed.mesh)
            summary[part] = "rebuilt" if outcome.rebuilt else ("meshed" if meshed.rebuilt else "cached")

        if design.section_cut.enabled:
            fused = await self._run(kernel.fuse_all, solids)
            cut = await self._run(apply_section_cut, kernel, fused, design.section_cut.y)
            merged = await self._run(kernel.triangulate, cut, tol)
        else:
            merged = merge_mesh_buffers(meshes)

        self.post(MeshResult(merged))
        self._status("ready (" + " ".join(f"{p}:{summary[p]}" for p in PARTS) + ")")

    # ─── Export ──────────────────────────────────────────────────────────────

    async def export(self, request: ExportRequest) -> None:
        design = DesignParams.from_mapping(request.params)
        enabled = request.enabled_parts()
        if not enabled:
            raise ProtocolError("Nothing enabled to export")

        if request.format == "dxf":
            if "base" not in enabled:
                raise ProtocolError("DXF export needs the base part enabled")
            layout = plan_baseplate(sample_path(design.path), design.base)
            data = await self._run(baseplate_to_dxf_bytes, layout)
        else:
            kernel = await self._kernels.get(self._status)
            solids = []
            for part in enabled:
                outcome = await self._part_solid(kernel, part, design, request.flags.get(part, PartFlags()))
                solids.append(outcome.solid)
            self._status(f"exporting {request.format}...")
            fused = await self._run(kernel.fuse_all, solids)
            if design.section_cut.enabled:
                fused = await self._run(apply_section_cut, kernel, fused, design.section_cut.y)
            if request.format == "step":
                data = await self._run(kernel.export_step, fused)
            else:
                data = await self._run(kernel.export_stl, fused, EXPORT_STL_TOLERANCE)

        self.post(FileResult(request.output_name, request.mime_type, data))
        self._status("ready")


class BuildWorker:
    """Serial message loop in front of a BuildOrchestrator."""

    def __init__(self, orchestrator: BuildOrchestrator):
        self.orchestrator = orchestrator
        self._queue: Deque[Any] = deque()
        self._wake = asyncio.Event()
        self._stopped = False
        self.dropped = 0

    def submit(self, message: Any) -> None:
        self._queue.append(message)
        self._wake.set()

    def stop(self) -> None:
        self._stopped = True
        self._wake.set()

    def _next_message(self) -> Any:
        message = self._queue.popleft()
        if _is_build(message):
            # A newer build in the queue supersedes this one.
            if any(_is_build(m) for m in self._queue):
                self.dropped += 1
                logger.debug("Dropping superseded build request")
                return None
        return message

    async def drain(self) -> None:
        """Process everything currently queued (and anything queued meanwhile)."""
        while self._queue:
            message = self._next_message()
            if message is not None:
                await self.orchestrator.handle(message)

    async def run(self) -> None:
        """Serve until ``stop``. Unhandled loop errors become error responses."""
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(self._loop_exception)
        while not self._stopped:
            await self._wake.wait()
            self._wake.clear()
            await self.drain()

    def _loop_exception(self, loop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        text = error_text(exc) if exc is not None else context.get("message", "unknown error")
        logger.error("Unhandled worker error: %s", text)
        self.orchestrator.post(ErrorResult(text))


def _is_build(message: Any) -> bool:
    return isinstance(message, dict) and message.get("type") == "build"
