"""
This module defines the configuration settings for the scrape config sidecar.

It uses Pydantic's `BaseSettings` to create a strongly-typed settings object that
is populated from environment variables. The settings cover the message bus
connection, the local instance address used for self-scrape exclusion, the
timer intervals driving materialization and eviction, and the on-disk layout
shared with the Telegraf agent (config directory, PID file, TLS material).
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SCRAPE_TARGET_TOPIC = "metrics.scrape_targets"


class SidecarSettings(BaseSettings):
    """
    Configuration model for the scrape config sidecar.

    Paths shared with the Telegraf agent are derived from `app_dir`, so that a
    deployment only needs to move one directory to relocate everything.

    Attributes:
        app_dir: Root directory of the application container.
        bus_hosts: Bus endpoints, separated by newlines or commas.
        instance_ip: This instance's own address; targets on this host are
                     never scraped.
        target_ttl: Seconds after which an unrefreshed announcement is evicted.
    """

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    app_dir: str = "/home/vcap/app"

    # Bus
    bus_hosts: str = "localhost"
    bus_port: int = 6379
    bus_username: Optional[str] = None
    bus_password: Optional[str] = None
    bus_tls: bool = False
    bus_tls_ca: Optional[str] = None
    bus_tls_cert: Optional[str] = None
    bus_tls_key: Optional[str] = None
    bus_reconnect_wait: float = 0.1  # seconds between reconnect attempts
    bus_health_check_interval: int = 20
    scrape_topic: str = SCRAPE_TARGET_TOPIC

    instance_ip: str = Field(
        default="",
        validation_alias=AliasChoices("CF_INSTANCE_IP", "INSTANCE_IP", "instance_ip"),
    )

    # Timers
    materialize_interval: float = 15.0
    eviction_interval: float = 15.0
    target_ttl: float = 45.0

    @property
    def bus_endpoints(self) -> List[str]:
        """Returns the configured bus hosts, one entry per non-blank line or comma item."""
        raw = self.bus_hosts.replace(",", "\n")
        return [host.strip() for host in raw.splitlines() if host.strip()]

    @property
    def config_dir(self) -> Path:
        return Path(self.app_dir) / "telegraf.d"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "inputs.conf"

    @property
    def pid_file(self) -> Path:
        return Path(self.app_dir) / "telegraf.pid"

    @property
    def tls_ca(self) -> str:
        return str(Path(self.app_dir) / "certs" / "scrape_ca.crt")

    @property
    def tls_cert(self) -> str:
        return str(Path(self.app_dir) / "certs" / "scrape.crt")

    @property
    def tls_key(self) -> str:
        return str(Path(self.app_dir) / "certs" / "scrape.key")


__all__ = ["SidecarSettings", "SCRAPE_TARGET_TOPIC"]
