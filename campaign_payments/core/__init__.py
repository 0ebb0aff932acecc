"""Core campaign processing: orchestration, tracking, reaping, reporting."""
from campaign_payments.core.clock import Clock, SystemClock
from campaign_payments.core.executor import ItemExecutor, idempotency_key
from campaign_payments.core.notifications import (
    CampaignEvents,
    CampaignNotifier,
    LoggingNotifier,
)
from campaign_payments.core.orchestrator import CampaignOrchestrator
from campaign_payments.core.reaper import CampaignReaper
from campaign_payments.core.reporting import CampaignReporter, CampaignStats, ExportFile
from campaign_payments.core.tracker import ProgressTracker

__all__ = [
    "CampaignEvents",
    "CampaignNotifier",
    "CampaignOrchestrator",
    "CampaignReaper",
    "CampaignReporter",
    "CampaignStats",
    "Clock",
    "ExportFile",
    "ItemExecutor",
    "LoggingNotifier",
    "ProgressTracker",
    "SystemClock",
    "idempotency_key",
]
