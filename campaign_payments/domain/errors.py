"""
Campaign error taxonomy.

Item-level errors are always recovered locally; campaign-level
infrastructure errors surface to the caller.
"""
from typing import Optional


class CampaignError(Exception):
    """Base exception for campaign processing errors."""

    def __init__(self, message: str, campaign_id: Optional[str] = None):
        super().__init__(message)
        self.campaign_id = campaign_id


class CampaignValidationError(CampaignError):
    """Raised when a creation request is malformed. No record is written."""

    pass


class CampaignNotFoundError(CampaignError):
    """Raised when a campaign id does not resolve to a stored record."""

    pass


class CampaignAccessError(CampaignError):
    """Raised when a principal acts on a campaign it does not own."""

    pass


class CampaignStateError(CampaignError):
    """Raised when an operation is not permitted in the campaign's current state."""

    pass


class ItemExecutionError(CampaignError):
    """
    Gateway or ledger failure for a single line item.

    Never escapes the item executor: it is converted to a failed outcome.
    """

    def __init__(self, message: str, campaign_id: Optional[str] = None, item_id: Optional[str] = None):
        super().__init__(message, campaign_id)
        self.item_id = item_id


class TrackerContentionError(CampaignError):
    """Raised when a CAS write keeps conflicting after every retry."""

    def __init__(self, campaign_id: str, attempts: int):
        super().__init__(
            f"Campaign {campaign_id} write conflicted {attempts} times", campaign_id
        )
        self.attempts = attempts


class OrchestrationError(CampaignError):
    """Unexpected failure outside the per-item boundary (e.g. store unavailable)."""

    pass


class ReportingError(CampaignError):
    """Raised when stats or export generation fails."""

    pass
