"""Core harness components: configuration, lifecycle events, fixtures and coverage tooling."""

from testem_coverage.core.cleanup import CleanupSequencer
from testem_coverage.core.config import HarnessConfig, load_config
from testem_coverage.core.events import GatedEvent, LifecycleEvent, SecondaryEventWait, order_by_priority
from testem_coverage.core.instrumenter import CommandInstrumenter, CopyInstrumenter, instrument_source
from testem_coverage.core.orchestrator import LifecycleOrchestrator, build_testem_options
from testem_coverage.core.proxies import construct_proxies
from testem_coverage.core.receiver import CoverageReceiver, ua_match
from testem_coverage.core.reporter import CommandReporter
from testem_coverage.core.server import ContentServer

__all__ = [
    "CleanupSequencer",
    "CommandInstrumenter",
    "CommandReporter",
    "ContentServer",
    "CopyInstrumenter",
    "CoverageReceiver",
    "GatedEvent",
    "HarnessConfig",
    "LifecycleEvent",
    "LifecycleOrchestrator",
    "SecondaryEventWait",
    "build_testem_options",
    "construct_proxies",
    "instrument_source",
    "load_config",
    "order_by_priority",
    "ua_match",
]
