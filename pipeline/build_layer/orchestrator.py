from __future__ import annotations

import json
import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from bittensor import logging

from build_layer.packager import ArtifactPackager
from build_layer.process_monitor import MonitorHandle, ProcessMonitor
from build_layer.prover_pool import ProverPool, prover_pool
from build_layer.ptau import PtauSelection, PtauSelector
from build_layer.setup_coordinator import SetupCoordinator
from build_layer.status_reporter import StatusReporter, status_key
from build_layer.toolchain.circom_handler import (
    CircomHandler,
    CompileOptions,
    StatusCompilerLog,
)
from build_layer.toolchain.factory import ProvingSystemRegistry, default_registry
from build_layer.workspace import BuildPaths, WorkspaceManager
from constants import (
    HARDHAT_IMPORT,
    MEMORY_MONITOR_INTERVAL_SECONDS,
    RESOURCE_LOG_INTERVAL_SECONDS,
    STATUS_FLUSH_INTERVAL_SECONDS,
)
from protocol import BuildRequest
from utils.files import download_file
from utils.system import get_temp_folder, unique_name

if TYPE_CHECKING:
    from build_layer.blob_store import BlobStore
    from build_layer.toolchain.base_handler import ProvingSystemHandler


@dataclass
class BuildResult:
    package_name: str
    status_code: int = 200


@dataclass
class BuildContext:
    """
    Everything one build passes between its stages.
    """

    request: BuildRequest
    paths: BuildPaths
    status: StatusReporter
    workspace: WorkspaceManager
    prover: Optional["ProvingSystemHandler"] = None
    monitor: Optional[MonitorHandle] = None
    ptau: Optional[PtauSelection] = None
    vkey: dict = field(default_factory=dict)


class Orchestrator:
    """
    Runs one build request end to end.

    Validation happens before anything is written or uploaded. From then on
    every failure is recorded in the status log as its string form and
    re-raised, the status log is drained and the prover lease is released.
    """

    def __init__(
        self,
        store: "BlobStore",
        registry: Optional[ProvingSystemRegistry] = None,
        pool: Optional[ProverPool] = None,
        base_dir: Optional[str] = None,
        compiler_factory: Callable[..., CircomHandler] = CircomHandler,
        downloader: Callable[..., str] = download_file,
        flush_interval: float = STATUS_FLUSH_INTERVAL_SECONDS,
        monitor_interval: float = MEMORY_MONITOR_INTERVAL_SECONDS,
        resource_interval: float = RESOURCE_LOG_INTERVAL_SECONDS,
        keep_workspace: bool = False,
    ):
        self.store = store
        self.registry = registry or default_registry()
        self.pool = pool or prover_pool
        self.base_dir = base_dir
        self.compiler_factory = compiler_factory
        self.downloader = downloader
        self.flush_interval = flush_interval
        self.monitor_interval = monitor_interval
        self.resource_interval = resource_interval
        self.keep_workspace = keep_workspace

    def build(self, payload: dict) -> BuildResult:
        """
        Build and upload the package described by ``payload``.

        Raises:
            BuildError: Any validation, download, setup or toolchain failure.
        """
        request = BuildRequest.from_payload(payload)
        package_name = unique_name(request.circuit_name)
        paths = BuildPaths(
            package_name,
            request.protocol,
            base_dir=self.base_dir or get_temp_folder(),
        )
        status = StatusReporter(self.store, status_key(request.request_id))
        ctx = BuildContext(
            request=request,
            paths=paths,
            status=status,
            workspace=WorkspaceManager(paths),
        )

        logging.info(f"Building {package_name} for request {request.request_id}")
        status.start_flushing(self.flush_interval)
        with self.pool.lease(package_name) as lease:
            try:
                ctx.prover = self.registry.get_handler(request.snarkjs_version, lease)
                status.log(f"Compiling {package_name}...")
                ctx.workspace.stage(request)
                self._compile(ctx)
                constraints = ctx.prover.constraint_count(paths.r1cs)
                status.log("Circuit constraints", {"constraints": constraints})
                ctx.ptau = self._select_ptau(ctx, constraints)
                self._setup(ctx)
                self._export(ctx)
                status.log("Storing build artifacts...")
                self._render_templates(ctx)
                ArtifactPackager(self.store, paths).package(
                    request, ctx.ptau.manifest_value
                )
                status.log("Complete.")
            except Exception as e:
                logging.error(f"Build {package_name} failed: {e}")
                logging.trace(traceback.format_exc())
                status.log(str(e))
                raise
            finally:
                self._finish(ctx)

        logging.success(f"Built {package_name}")
        return BuildResult(package_name=package_name)

    def _compile(self, ctx: BuildContext):
        request = ctx.request
        compiler = self.compiler_factory(
            request.circom_path, StatusCompilerLog(ctx.status)
        )
        ctx.status.log(
            "Toolchain versions",
            {"circom": compiler.version(), "snarkjs": ctx.prover.version},
        )

        def _memory_usage(memory_usage: int):
            ctx.status.log("Circom memory usage", {"memoryUsage": memory_usage})

        ctx.monitor = ProcessMonitor.start(
            request.circom_path, self.monitor_interval, _memory_usage
        )
        try:
            compiler.compile(
                ctx.paths,
                CompileOptions(
                    prime=request.prime,
                    optimization=request.optimization,
                    c_witness=request.c_witness,
                    skip_wasm=request.skip_wasm,
                ),
            )
        finally:
            ctx.monitor.cancel()

    def _select_ptau(self, ctx: BuildContext, constraints: int) -> PtauSelection:
        selector = PtauSelector(
            ctx.paths.ptau_cache_dir,
            ctx.status,
            local_dir=ctx.paths.local_ptau_dir if ctx.request.needs_local_ptau else None,
            downloader=self.downloader,
        )
        return selector.select(ctx.request, constraints)

    def _setup(self, ctx: BuildContext):
        coordinator = SetupCoordinator(
            ctx.prover, ctx.paths, ctx.status, downloader=self.downloader
        )
        if not ctx.request.uses_supplied_zkey and ctx.request.final_zkey:
            logging.warning(
                f"finalZkey ignored for {ctx.request.protocol}, running circuit setup"
            )
        ctx.status.start_resource_logs(self.resource_interval, ctx.paths.package_dir)
        try:
            coordinator.run(ctx.request, ctx.ptau.path)
        finally:
            ctx.status.stop_resource_logs()

    def _export(self, ctx: BuildContext):
        ctx.status.log("Exporting verification key and solidity verifier...")
        ctx.vkey = ctx.prover.export_verification_key(ctx.paths.pkey)
        with open(ctx.paths.vkey, "w", encoding="utf-8") as f:
            json.dump(ctx.vkey, f, indent=2)

        # Some plonk verifier templates ship with a hardhat debug import
        contract = ctx.prover.export_solidity_verifier(ctx.paths.pkey)
        contract = contract.replace(HARDHAT_IMPORT, "")
        with open(ctx.paths.contract, "w", encoding="utf-8") as f:
            f.write(contract)

    def _render_templates(self, ctx: BuildContext):
        ctx.workspace.render_templates(
            {
                "package_name": ctx.paths.package_name,
                "circuit_name": ctx.request.circuit_name,
                "snarkjs_version": ctx.request.snarkjs_version,
                "protocol": ctx.request.protocol,
                "wasm_path": ctx.paths.wasm_relative,
                "pkey_path": ctx.paths.pkey_relative,
                "vkey": json.dumps(ctx.vkey, indent=2),
            }
        )

    def _finish(self, ctx: BuildContext):
        if ctx.monitor is not None:
            ctx.monitor.cancel()
        ctx.status.close()
        if self.keep_workspace:
            logging.info(f"Keeping workspace {ctx.paths.package_dir}")
            return
        try:
            ctx.workspace.cleanup()
        except OSError as e:
            logging.warning(f"Workspace {ctx.paths.package_dir} left behind: {e}")
