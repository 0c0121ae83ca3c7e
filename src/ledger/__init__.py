# Core stock-ledger components: normalize raw movements, replay them into
# running per-store balances, and reconcile against recorded stock-takes.

from .errors import LedgerError, InvalidRangeError, MissingBoundaryError, UnknownEventType
from .models import (
    EventSource,
    EventType,
    StoreLevels,
    TimeWindow,
    Transaction,
    TransactionLine,
    StockOperation,
    OperationLine,
    ConversionRecord,
    Snapshot,
    SubLeg,
    LedgerEvent,
    LedgerPoint,
)
from .config import LedgerSettings, settings
from .classification import EventClassifier
from .parsers import TimestampParser, ServerClockShift, to_kg, to_store_no
from .normalizer import EventNormalizer
from .builder import LedgerBuilder, level_at
from .reconciliation import (
    ReconciliationValidator,
    ReconciliationReport,
    ReconciliationIssue,
    MovementRow,
)
from .engine import LedgerEngine, LedgerResult, reconcile, select_boundaries
from .analysis import ledger_frame, stock_series, find_zero_points, wastage_summary
from .quality import DataQualityReport, DataQualityChecker

__all__ = [
    "LedgerError",
    "InvalidRangeError",
    "MissingBoundaryError",
    "UnknownEventType",
    "EventSource",
    "EventType",
    "StoreLevels",
    "TimeWindow",
    "Transaction",
    "TransactionLine",
    "StockOperation",
    "OperationLine",
    "ConversionRecord",
    "Snapshot",
    "SubLeg",
    "LedgerEvent",
    "LedgerPoint",
    "LedgerSettings",
    "settings",
    "EventClassifier",
    "TimestampParser",
    "ServerClockShift",
    "to_kg",
    "to_store_no",
    "EventNormalizer",
    "LedgerBuilder",
    "level_at",
    "ReconciliationValidator",
    "ReconciliationReport",
    "ReconciliationIssue",
    "MovementRow",
    "LedgerEngine",
    "LedgerResult",
    "reconcile",
    "select_boundaries",
    "ledger_frame",
    "stock_series",
    "find_zero_points",
    "wastage_summary",
    "DataQualityReport",
    "DataQualityChecker",
]
