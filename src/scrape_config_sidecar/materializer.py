"""
This module renders the target registry into Telegraf's prometheus input
configuration and hands it over to the agent.

Each call to `ConfigMaterializer.materialize` is one tick: it snapshots the
registry, builds the sorted list of scrape URLs, serializes the document to
TOML and compares it byte for byte with the file on disk. Only a changed
document is written, and only when the agent pid is known, since a new file the
agent is never told about would silently drift from what it actually scrapes.
Writes go through a temporary file and `os.replace`, so the agent never reads
a half-written config.
"""
from __future__ import annotations

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Union

import tomli_w

from .config import SidecarSettings
from .process import ProcessControlError, ProcessController
from .registry import TargetRegistry
from .schemas import PrometheusInputConfig, TelegrafConfig, TimestampedEntry

LOGGER = logging.getLogger(__name__)

INPUT_PLUGIN_NAME = "prometheus"
CONFIG_FILE_MODE = 0o644


class MaterializeOutcome(str, Enum):
    """
    Result of one materialization tick.

    Attributes:
        UNCHANGED: The rendered config matches the file on disk.
        RELOADED: A new config was written and the agent signalled.
        WRITTEN: A new config was written but the reload signal failed.
        SKIPPED: The tick was aborted before anything was written.
    """

    UNCHANGED = "unchanged"
    RELOADED = "reloaded"
    WRITTEN = "written"
    SKIPPED = "skipped"


def split_host(target: str) -> Optional[str]:
    """
    Returns the host part of a ``host:port`` string, or None if it is malformed.

    Bracketed IPv6 literals (``[::1]:9100``) are returned without brackets.
    """
    host, sep, _port = target.rpartition(":")
    if not sep:
        return None
    if host.startswith("["):
        if not host.endswith("]"):
            return None
        return host[1:-1]
    if ":" in host or "[" in host or "]" in host:
        return None
    return host


def scrape_url(target: str, param_id: Optional[str]) -> str:
    """Formats the scrape URL; ``param_id`` is appended verbatim as the ``id`` parameter."""
    if param_id is None:
        return f"https://{target}"
    return f"https://{target}?id={param_id}"


def build_scrape_urls(entries: Iterable[TimestampedEntry], local_address: str) -> List[str]:
    """
    Builds the sorted, deduplicated list of URLs to scrape.

    Targets whose host equals ``local_address`` are skipped; the port is not
    compared, so every endpoint on this host is excluded.

    Args:
        entries: Registry entries to render.
        local_address: This instance's own address.

    Returns:
        URLs in lexicographic order.
    """
    urls = set()
    for entry in entries:
        param_id = entry.target.param_id
        for target in entry.target.targets:
            host = split_host(target)
            if host is None:
                LOGGER.warning(
                    "Ignoring malformed target %r announced by %r", target, entry.target.source
                )
                continue
            if host == local_address:
                continue
            urls.add(scrape_url(target, param_id))
    return sorted(urls)


def render_config(
    urls: List[str],
    *,
    tls_ca: str,
    tls_cert: str,
    tls_key: str,
) -> bytes:
    """Serializes the Telegraf input configuration for ``urls`` to TOML bytes."""
    config = TelegrafConfig(
        inputs={
            INPUT_PLUGIN_NAME: PrometheusInputConfig(
                urls=urls,
                tls_ca=tls_ca,
                tls_cert=tls_cert,
                tls_key=tls_key,
            )
        }
    )
    return tomli_w.dumps(config.model_dump()).encode("utf-8")


def write_atomically(path: Path, content: bytes) -> None:
    """Replaces ``path`` with ``content`` so readers see either the old or the new file."""
    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, CONFIG_FILE_MODE)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


class ConfigMaterializer:
    """
    Turns registry snapshots into the Telegraf config file.

    Attributes:
        registry: Source of scrape targets.
        controller: Locates and reloads the Telegraf process.
        config_path: File the agent reads its prometheus input from.
        local_address: This instance's address, excluded from scraping.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        controller: ProcessController,
        config_path: Union[str, Path],
        *,
        local_address: str,
        tls_ca: str,
        tls_cert: str,
        tls_key: str,
    ) -> None:
        self.registry = registry
        self.controller = controller
        self.config_path = Path(config_path)
        self.local_address = local_address
        self._tls = {"tls_ca": tls_ca, "tls_cert": tls_cert, "tls_key": tls_key}

    @classmethod
    def from_settings(
        cls,
        settings: SidecarSettings,
        registry: TargetRegistry,
        controller: ProcessController,
    ) -> "ConfigMaterializer":
        return cls(
            registry,
            controller,
            settings.config_path,
            local_address=settings.instance_ip,
            tls_ca=settings.tls_ca,
            tls_cert=settings.tls_cert,
            tls_key=settings.tls_key,
        )

    def render(self, entries: Optional[Mapping[str, TimestampedEntry]] = None) -> bytes:
        """Renders ``entries`` (a fresh registry snapshot by default) to config bytes."""
        if entries is None:
            entries = self.registry.snapshot()
        urls = build_scrape_urls(entries.values(), self.local_address)
        return render_config(urls, **self._tls)

    def _read_current(self) -> bytes:
        try:
            return self.config_path.read_bytes()
        except FileNotFoundError:
            return b""
        except OSError as exc:
            LOGGER.warning("Unable to read current config %s: %s", self.config_path, exc)
            return b""

    def materialize(self) -> MaterializeOutcome:
        """
        Runs one materialization tick.

        Never raises for operational failures: they are logged and reported
        through the returned outcome, and the next tick starts from scratch.
        """
        try:
            content = self.render()
        except (TypeError, ValueError) as exc:
            LOGGER.error("Failed to serialize telegraf config: %s", exc)
            return MaterializeOutcome.SKIPPED

        if content == self._read_current():
            return MaterializeOutcome.UNCHANGED

        try:
            pid = self.controller.current_pid()
        except ProcessControlError as exc:
            LOGGER.error("Not writing config, telegraf pid unavailable: %s", exc)
            return MaterializeOutcome.SKIPPED

        try:
            write_atomically(self.config_path, content)
        except OSError as exc:
            LOGGER.error("Failed to write %s: %s", self.config_path, exc)
            return MaterializeOutcome.SKIPPED
        LOGGER.info("Wrote %s", self.config_path)

        try:
            self.controller.reload(pid)
        except ProcessControlError as exc:
            LOGGER.error("Failed to reload telegraf: %s", exc)
            return MaterializeOutcome.WRITTEN
        return MaterializeOutcome.RELOADED


__all__ = [
    "ConfigMaterializer",
    "MaterializeOutcome",
    "build_scrape_urls",
    "render_config",
    "scrape_url",
    "split_host",
    "write_atomically",
]
