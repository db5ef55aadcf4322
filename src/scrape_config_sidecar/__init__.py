"""
Scrape config sidecar for Telegraf.

Collects scrape target announcements from the message bus, keeps them in an
expiring registry and renders them into Telegraf's prometheus input
configuration, reloading the agent whenever that configuration changes.
"""
from .materializer import ConfigMaterializer, MaterializeOutcome
from .process import PidFileProcessController, ProcessController, ProcessControlError
from .registry import TargetRegistry
from .scheduler import Scheduler
from .schemas import ScrapeTarget, TimestampedEntry
from .subscriber import BusConnectionError, ScrapeTargetSubscriber, handle_scrape_target_message

__all__ = [
    "BusConnectionError",
    "ConfigMaterializer",
    "MaterializeOutcome",
    "PidFileProcessController",
    "ProcessControlError",
    "ProcessController",
    "Scheduler",
    "ScrapeTarget",
    "ScrapeTargetSubscriber",
    "TargetRegistry",
    "TimestampedEntry",
    "handle_scrape_target_message",
]
