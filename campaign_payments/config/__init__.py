"""Configuration package for campaign payments."""
from campaign_payments.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
