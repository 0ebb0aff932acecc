"""
Domain Layer - campaign records, creation requests and kind policies.

No infrastructure dependencies: records and policies are testable
without a store, gateway or clock.
"""
from campaign_payments.domain.errors import (
    CampaignAccessError,
    CampaignError,
    CampaignNotFoundError,
    CampaignStateError,
    CampaignValidationError,
    ItemExecutionError,
    OrchestrationError,
    ReportingError,
    TrackerContentionError,
)
from campaign_payments.domain.models import (
    FINAL_STATUSES,
    OUTCOME_STATUSES,
    STARTABLE_STATUSES,
    CampaignKind,
    CampaignRecord,
    CampaignStatus,
    ItemOutcome,
    ItemStatus,
    LineItem,
)
from campaign_payments.domain.policies import CampaignPolicy, get_policy
from campaign_payments.domain.requests import (
    BulkCampaignRequest,
    CampaignRequest,
    LineItemRequest,
    ScheduledCampaignRequest,
    SplitCampaignRequest,
)

__all__ = [
    "BulkCampaignRequest",
    "CampaignAccessError",
    "CampaignError",
    "CampaignKind",
    "CampaignNotFoundError",
    "CampaignPolicy",
    "CampaignRecord",
    "CampaignRequest",
    "CampaignStateError",
    "CampaignStatus",
    "CampaignValidationError",
    "FINAL_STATUSES",
    "ItemExecutionError",
    "ItemOutcome",
    "ItemStatus",
    "LineItem",
    "LineItemRequest",
    "OUTCOME_STATUSES",
    "OrchestrationError",
    "ReportingError",
    "STARTABLE_STATUSES",
    "ScheduledCampaignRequest",
    "SplitCampaignRequest",
    "TrackerContentionError",
    "get_policy",
]
