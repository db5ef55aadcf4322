"""
This module serves as the main entry point of the scrape config sidecar.

`build_sidecar` wires the registry, bus subscriber, materializer and scheduler
from `SidecarSettings`; `main` configures logging, performs the startup checks
that must succeed for anything downstream to work (creating the Telegraf
config directory, connecting to the bus) and then runs the scheduler until the
process is terminated.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .config import SidecarSettings
from .logging_utils import configure_logging
from .materializer import ConfigMaterializer
from .process import PidFileProcessController, ProcessController
from .registry import TargetRegistry
from .scheduler import Scheduler
from .subscriber import BusConnectionError, ScrapeTargetSubscriber

LOGGER = logging.getLogger("scrape_config_sidecar")

MATERIALIZE_TASK = "materialize"
EVICT_TASK = "evict"


@dataclass
class Sidecar:
    settings: SidecarSettings
    registry: TargetRegistry
    subscriber: ScrapeTargetSubscriber
    materializer: ConfigMaterializer
    scheduler: Scheduler


def evict_expired(registry: TargetRegistry, ttl: float) -> int:
    evicted = registry.evict_older_than(ttl)
    if evicted:
        LOGGER.info("Evicted %d stale scrape target source(s)", evicted)
    return evicted


def build_sidecar(
    settings: SidecarSettings,
    *,
    registry: Optional[TargetRegistry] = None,
    controller: Optional[ProcessController] = None,
    subscriber: Optional[ScrapeTargetSubscriber] = None,
    scheduler: Optional[Scheduler] = None,
) -> Sidecar:
    """
    Wires all components from ``settings``.

    Every component can be supplied by the caller, which is how tests swap in
    fakes for the bus and the Telegraf process.
    """
    # TargetRegistry defines __len__, so an empty one is falsy; compare with None.
    if registry is None:
        registry = TargetRegistry()
    if controller is None:
        controller = PidFileProcessController(settings.pid_file)
    if subscriber is None:
        subscriber = ScrapeTargetSubscriber.from_settings(settings, registry)
    elif subscriber.registry is not registry:
        raise ValueError("subscriber must feed the registry the sidecar renders")
    materializer = ConfigMaterializer.from_settings(settings, registry, controller)
    if scheduler is None:
        scheduler = Scheduler()

    scheduler.add_task(MATERIALIZE_TASK, settings.materialize_interval, materializer.materialize)
    scheduler.add_task(
        EVICT_TASK,
        settings.eviction_interval,
        lambda: evict_expired(registry, settings.target_ttl),
    )
    return Sidecar(
        settings=settings,
        registry=registry,
        subscriber=subscriber,
        materializer=materializer,
        scheduler=scheduler,
    )


def prepare_config_dir(settings: SidecarSettings) -> None:
    """
    Creates the Telegraf config directory.

    The directory must not exist yet: a leftover directory means another
    generator may own the files in it.

    Raises:
        OSError: If the directory cannot be created.
    """
    os.mkdir(settings.config_dir)


async def run(sidecar: Sidecar) -> None:
    sidecar.subscriber.start()
    try:
        await sidecar.scheduler.run_forever()
    finally:
        sidecar.subscriber.close()


def main() -> None:
    """
    Starts the sidecar.

    Exits with status 1 if the config directory cannot be created or no bus
    endpoint is reachable.
    """
    configure_logging()
    settings = SidecarSettings()

    try:
        prepare_config_dir(settings)
    except OSError as exc:
        LOGGER.critical("unable to make dir(%s): %s", settings.config_dir, exc)
        raise SystemExit(1) from exc

    sidecar = build_sidecar(settings)
    try:
        sidecar.subscriber.connect()
    except BusConnectionError as exc:
        LOGGER.critical("%s", exc)
        raise SystemExit(1) from exc

    LOGGER.info(
        "Scrape config sidecar running (instance_ip=%s, config=%s, ttl=%gs)",
        settings.instance_ip or "<unset>",
        settings.config_path,
        settings.target_ttl,
    )
    asyncio.run(run(sidecar))


if __name__ == "__main__":
    main()
