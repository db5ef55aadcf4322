"""
This module defines the Pydantic data models used by the scrape config sidecar.

Two families of models live here. `ScrapeTarget` and `TimestampedEntry` describe
what arrives over the bus and how the registry stores it. `PrometheusInputConfig`
and `TelegrafConfig` describe the document written for the Telegraf agent; the
field names match the agent's configuration keys so that `model_dump()` can be
serialized as-is.
"""
from __future__ import annotations

from datetime import date
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

PARAM_ID_LABEL = "__param_id"


class ScrapeTarget(BaseModel):
    """
    One announcement from a source process.

    Decoding is forward compatible: unknown fields are ignored and missing
    fields fall back to empty values.

    Attributes:
        source: Identifier of the announcer, used as the registry key.
        targets: ``host:port`` endpoints exposing metrics, in announced order.
        labels: Free-form labels; ``__param_id`` becomes the ``id`` query parameter.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    source: str = Field(default="", description="Unique identifier of the announcing process")
    targets: List[str] = Field(default_factory=list, description="host:port endpoints to scrape")
    labels: Dict[str, str] = Field(default_factory=dict, description="Labels attached to the targets")

    @staticmethod
    def _coerce_scalar(value: object) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float, date)):
            return str(value)
        raise ValueError(f"expected a scalar, got {type(value).__name__}")

    @field_validator("source", mode="before")
    @classmethod
    def _normalise_source(cls, value: object) -> str:
        return cls._coerce_scalar(value)

    @field_validator("targets", mode="before")
    @classmethod
    def _normalise_targets(cls, value: object) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [cls._coerce_scalar(item) for item in value]
        return value  # type: ignore[return-value]

    @field_validator("labels", mode="before")
    @classmethod
    def _normalise_labels(cls, value: object) -> Dict[str, str]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {
                cls._coerce_scalar(key): cls._coerce_scalar(item)
                for key, item in value.items()
            }
        return value  # type: ignore[return-value]

    @property
    def param_id(self) -> str | None:
        return self.labels.get(PARAM_ID_LABEL)


class TimestampedEntry(BaseModel):
    """A registry entry: the latest announcement of a source and when it arrived."""

    model_config = ConfigDict(frozen=True)

    target: ScrapeTarget
    received_at: float

    def age(self, now: float) -> float:
        return now - self.received_at


class PrometheusInputConfig(BaseModel):
    """
    Settings of Telegraf's ``inputs.prometheus`` plugin managed by the sidecar.

    Only ``urls`` changes from one render to the next; the TLS material and
    protocol flags are fixed for the deployment.
    """

    urls: List[str] = Field(default_factory=list)
    tls_ca: str
    tls_cert: str
    tls_key: str
    insecure_skip_verify: bool = True
    metric_version: int = 2


class TelegrafConfig(BaseModel):
    """Top-level document; holds exactly one input block keyed by plugin name."""

    inputs: Dict[str, PrometheusInputConfig]


__all__ = [
    "PARAM_ID_LABEL",
    "ScrapeTarget",
    "TimestampedEntry",
    "PrometheusInputConfig",
    "TelegrafConfig",
]
