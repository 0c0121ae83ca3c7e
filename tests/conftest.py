import pytest

from ledger.config import LedgerSettings
from ledger.engine import LedgerEngine


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def engine(ledger_settings):
    return LedgerEngine(ledger_settings)
