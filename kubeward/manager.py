"""Manager process.

Wires the store, the minikube provisioner, both reconcilers and the
scheduler actor together, pumps store events into the scheduler, and
exposes probe and metrics endpoints over aiohttp.

Routes:
- ``/healthz``: the process is up.
- ``/readyz``: the event pump is running and the scheduler answers.
- ``/metrics``: Prometheus exposition of the engine's metrics.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from aiohttp import web
from casty import ActorRef, ActorSystem, CastyConfig

from kubeward.actors.messages import GetStats, SchedulerMsg, SchedulerStats
from kubeward.actors.scheduler import scheduler_actor
from kubeward.api.model import Kind
from kubeward.config import ManagerConfig, resolve_config
from kubeward.core.exceptions import ConfigurationError
from kubeward.manifest import apply_manifest, load_manifest
from kubeward.observability.logger import logger
from kubeward.observability.logging import setup_logging, teardown_logging
from kubeward.observability.metrics import render
from kubeward.provisioner import NodeProvisioner
from kubeward.providers.minikube import Minikube
from kubeward.reconcile import ClusterReconciler, MachineReconciler, Reconciler
from kubeward.store import MemoryStore, ResourceStore
from kubeward.watch import pump_events

log = logger.bind(component="manager")

METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class Probes:
    """Readiness shared between the event pump and the probe routes."""

    pump_running: bool = False


def parse_bind_address(address: str) -> tuple[str, int] | None:
    """``":8080"`` → ``("0.0.0.0", 8080)``; ``"0"`` disables the endpoint."""
    if address in ("", "0"):
        return None
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigurationError(f"Invalid bind address {address!r}, expected host:port")
    return host or "0.0.0.0", int(port)


def build_reconcilers(store: ResourceStore, provisioner: NodeProvisioner) -> dict[Kind, Reconciler]:
    return {
        Kind.KUBE_CLUSTER: ClusterReconciler(store, provisioner),
        Kind.KUBE_MACHINE: MachineReconciler(store, provisioner),
    }


def create_app(
    system: ActorSystem,
    scheduler: ActorRef[SchedulerMsg],
    probes: Probes,
    *,
    health: bool = True,
    metrics: bool = True,
) -> web.Application:

    async def healthz(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def readyz(_request: web.Request) -> web.Response:
        if not probes.pump_running:
            return web.json_response({"status": "starting"}, status=503)
        try:
            stats: SchedulerStats = await system.ask(
                scheduler, lambda reply_to: GetStats(reply_to=reply_to), timeout=2.0,
            )
        except TimeoutError:
            return web.json_response({"status": "scheduler unresponsive"}, status=503)
        return web.json_response({
            "status": "ready",
            "inflight": len(stats.inflight),
            "failing": sorted(str(ref) for ref in stats.failures),
            "passes": stats.passes,
        })

    async def metrics_handler(_request: web.Request) -> web.Response:
        return web.Response(body=render(), headers={"Content-Type": METRICS_CONTENT_TYPE})

    app = web.Application()
    if health:
        app.router.add_get("/healthz", healthz)
        app.router.add_get("/readyz", readyz)
    if metrics:
        app.router.add_get("/metrics", metrics_handler)
    return app


async def _serve(
    system: ActorSystem,
    scheduler: ActorRef[SchedulerMsg],
    probes: Probes,
    config: ManagerConfig,
) -> list[web.AppRunner]:
    endpoints: dict[tuple[str, int], set[str]] = {}
    for role, address in (
        ("metrics", config.metrics_bind_address),
        ("health", config.health_probe_bind_address),
    ):
        bind = parse_bind_address(address)
        if bind is not None:
            endpoints.setdefault(bind, set()).add(role)

    runners: list[web.AppRunner] = []
    for (host, port), roles in endpoints.items():
        app = create_app(
            system, scheduler, probes,
            health="health" in roles, metrics="metrics" in roles,
        )
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, host, port).start()
        runners.append(runner)
        log.info("Serving {roles} on {host}:{port}", roles=sorted(roles), host=host, port=port)
    return runners


async def run_manager(
    config: ManagerConfig,
    store: ResourceStore | None = None,
    provisioner: NodeProvisioner | None = None,
    reconcilers: Mapping[Kind, Reconciler] | None = None,
) -> None:
    """Run until cancelled."""
    store = store if store is not None else MemoryStore()
    provisioner = provisioner if provisioner is not None else Minikube(
        storage_path=config.storage_path,
        binary=config.minikube_binary,
        timeout=config.provisioner_timeout,
    ).create_provisioner()
    reconcilers = reconcilers if reconcilers is not None else build_reconcilers(store, provisioner)

    if config.manifest is not None:
        resources = load_manifest(config.manifest)
        await apply_manifest(store, resources)
        log.info("Applied {n} resources from {path}", n=len(resources), path=config.manifest)

    probes = Probes()

    def _pump_started() -> None:
        probes.pump_running = True

    async with ActorSystem(
        "kubeward", config=CastyConfig(suppress_dead_letters_on_shutdown=True),
    ) as system:
        scheduler = system.spawn(
            scheduler_actor(
                reconcilers,
                reconcile_timeout=config.reconcile_timeout,
                backoff_base=config.backoff_base,
                backoff_max=config.backoff_max,
            ),
            "scheduler",
        )
        runners = await _serve(system, scheduler, probes, config)
        log.info(
            "Manager started (storage={storage}, default profile={profile})",
            storage=config.storage_path, profile=config.profile,
        )
        try:
            await pump_events(store, scheduler, on_started=_pump_started)
        finally:
            probes.pump_running = False
            for runner in runners:
                await runner.cleanup()
            log.info("Manager stopped")


async def main(config: ManagerConfig) -> None:
    handler_ids = setup_logging(config.log)
    try:
        await run_manager(config)
    finally:
        teardown_logging(handler_ids)


def cli() -> None:
    parser = argparse.ArgumentParser(description="kubeward reconciliation manager")
    parser.add_argument("--storage-path", type=str, default=None, help="Path to the minikube storage directory")
    parser.add_argument("--profile", type=str, default=None, help="Default minikube profile name")
    parser.add_argument("--metrics-bind-address", type=str, default=None, help="Address the metrics endpoint binds to")
    parser.add_argument("--health-probe-bind-address", type=str, default=None, help="Address the probe endpoint binds to")
    parser.add_argument("--manifest", type=str, default=None, help="Resource manifest (TOML or JSON) applied at startup")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directory holding kubeward.toml")
    parser.add_argument("--log-level", type=str, default=None, choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    try:
        config = resolve_config(
            {
                "storage_path": args.storage_path,
                "profile": args.profile,
                "metrics_bind_address": args.metrics_bind_address,
                "health_probe_bind_address": args.health_probe_bind_address,
                "manifest": args.manifest,
                "log_level": args.log_level,
            },
            project_dir=args.config_dir,
        )
    except ConfigurationError as e:
        parser.error(str(e))

    asyncio.run(main(config))


if __name__ == "__main__":
    cli()
