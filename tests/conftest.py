"""
Pytest configuration and fixtures.
"""
import pytest

from campaign_payments.config import Settings
from campaign_payments.core import CampaignOrchestrator, CampaignReaper, CampaignReporter
from campaign_payments.infrastructure import InMemoryCampaignStore, InMemoryLedger
from tests.factories import ManualClock, RecordingNotifier, StubGateway


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no delays and a generous write-retry budget."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="campaign-payments-test",
        app_env="test",
        log_level="DEBUG",
        batch_size=10,
        batch_delay_seconds=0,
        tracker_max_attempts=100,
        tracker_backoff_initial=0,
        tracker_backoff_max=0,
        reaper_execution_delay=0,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> InMemoryCampaignStore:
    return InMemoryCampaignStore()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(
    store: InMemoryCampaignStore,
    gateway: StubGateway,
    ledger: InMemoryLedger,
    clock: ManualClock,
    test_settings: Settings,
    notifier: RecordingNotifier,
) -> CampaignOrchestrator:
    return CampaignOrchestrator(
        store=store,
        gateway=gateway,
        ledger=ledger,
        clock=clock,
        settings=test_settings,
        notifier=notifier,
    )


@pytest.fixture
def reaper(orchestrator: CampaignOrchestrator) -> CampaignReaper:
    return CampaignReaper(orchestrator)


@pytest.fixture
def reporter(store: InMemoryCampaignStore, clock: ManualClock) -> CampaignReporter:
    return CampaignReporter(store, clock)
