"""Mock exchange: in-memory ledger, SQLite journal and FastAPI app."""

from arbsim.mock_exchange.app import create_app
from arbsim.mock_exchange.database import LedgerJournal
from arbsim.mock_exchange.ledger import LedgerError, MockLedger

__all__ = ["LedgerError", "LedgerJournal", "MockLedger", "create_app"]
