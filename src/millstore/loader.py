"""
Loader for the mill's two-store table exports.

THIS FILE CONTAINS CLIENT-SPECIFIC LOGIC:
- Table and column names of the store database exports
- IS_ACTIVE soft-delete flags on headers and lines
- Server-stamped (UTC) vs terminal-synced (local) timestamps, told apart by code
- Join exports that repeat header rows once per line
- Physical stock-takes kept in a separate workbook

To adapt for another deployment:
1. Update the file names and column mappings below
2. Adjust the code prefixes in LedgerSettings if the code scheme differs
3. The ledger core (normalizer, builder, validator) is reused as-is
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from ledger.config import LedgerSettings, settings as default_settings
from ledger.engine import LedgerEngine, LedgerResult, select_boundaries
from ledger.models import (
    ZERO,
    ConversionRecord,
    OperationLine,
    RawEventRecord,
    Snapshot,
    StockOperation,
    StoreLevels,
    Transaction,
    TransactionLine,
)
from ledger.parsers import ServerClockShift, TimestampParser, to_kg, to_store_no
from ledger.quality import DataQualityChecker, DataQualityReport

logger = logging.getLogger(__name__)

TRANSACTIONS_FILE = "store_transactions.csv"
TRANSACTION_ITEMS_FILE = "store_transactions_items.csv"
OPERATIONS_FILE = "store_stock_operations.csv"
OPERATION_ITEMS_FILE = "store_stock_operation_items.csv"
CONVERSIONS_FILE = "store_stock_operation_conversions.csv"
STOCK_TAKES_FILE = "stock_takes.xlsx"


@dataclass
class LoadedExports:
    """All exported tables, cleaned, plus their quality reports."""

    transactions: pd.DataFrame
    transaction_items: pd.DataFrame
    operations: pd.DataFrame
    operation_items: pd.DataFrame
    conversions: pd.DataFrame
    stock_takes: pd.DataFrame
    quality_reports: dict[str, DataQualityReport] = field(default_factory=dict)


def _none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _is_active(value: Any) -> bool:
    value = _none(value)
    if value is None:
        return True
    return str(value).strip().lower() not in ("0", "0.0", "false", "no")


OP_REFERENCE = re.compile(r"^\s*\[([^\]]+)\]")


def _side_effect_of(tx: Transaction) -> str | None:
    """OP_CODE of the stock operation that wrote this row, if any."""
    if not (tx.code or "").startswith("STOCKOP-"):
        return None
    match = OP_REFERENCE.match(tx.comments or "")
    return match.group(1).strip() if match else None


class MillStoreLoader:
    """
    Reads the store exports and turns them into ledger input.

    Everything is read as text so quantities reach Decimal without a trip
    through binary floats.

    Usage:
        loader = MillStoreLoader("data/exports")
        records = loader.records_for_item(860)
        result = loader.reconcile_item(860, "2026-02-16 06:05:30", "2026-02-21 23:59:59")
    """

    def __init__(self, data_dir: Path | str, settings: LedgerSettings | None = None):
        self.data_dir = Path(data_dir)
        self.settings = settings or default_settings
        self.timestamps = TimestampParser()
        self.clock = ServerClockShift(self.settings)
        self._exports: LoadedExports | None = None

    # --- table loading ---

    def load_all(self) -> LoadedExports:
        """Load every table and run its quality checks."""
        tx, tx_items = self.load_transactions()
        ops, op_items, conversions = self.load_stock_operations()
        takes = self.load_stock_takes()

        quality_reports = {
            "transactions": self._check_transactions(tx),
            "transaction_items": self._check_lines(tx_items, "store_transactions_items", "QUANTITY"),
            "operations": self._check_operations(ops),
            "operation_items": self._check_lines(op_items, "store_stock_operation_items", "CLEARED_QUANTITY"),
            "stock_takes": self._check_stock_takes(takes),
        }
        for name, report in quality_reports.items():
            if report.has_critical_issues:
                logger.warning(
                    "Export %s has critical quality issues: %s",
                    name,
                    "; ".join(report.summary()["critical_issues"]),
                )

        # Drop rows that can't be placed on the timeline, and join repeats
        tx = tx[tx["timestamp"].notna()].drop_duplicates(subset=["TRANSACTION_ID"])
        ops = ops[ops["timestamp"].notna()].drop_duplicates(subset=["OP_ID"])
        takes = takes[takes["timestamp"].notna()]

        self._exports = LoadedExports(
            transactions=tx,
            transaction_items=tx_items,
            operations=ops,
            operation_items=op_items,
            conversions=conversions,
            stock_takes=takes,
            quality_reports=quality_reports,
        )
        return self._exports

    def load_transactions(self) -> tuple[pd.DataFrame, pd.DataFrame]:
        """
        Load store transaction headers and their item lines.

        Client-specific handling:
        - CREATED_DATE shifted to local time for server-stamped codes
        """
        tx = pd.read_csv(self.data_dir / TRANSACTIONS_FILE, dtype=str)
        items = pd.read_csv(self.data_dir / TRANSACTION_ITEMS_FILE, dtype=str)
        tx["timestamp"] = self._local_timestamps(tx, "CREATED_DATE", "CODE")
        return tx, items

    def load_stock_operations(self) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
        """
        Load stock operations, their item lines and conversion sub-records.

        The conversions export is optional; older deployments don't have it.
        """
        ops = pd.read_csv(self.data_dir / OPERATIONS_FILE, dtype=str)
        items = pd.read_csv(self.data_dir / OPERATION_ITEMS_FILE, dtype=str)
        conversions_path = self.data_dir / CONVERSIONS_FILE
        if conversions_path.exists():
            conversions = pd.read_csv(conversions_path, dtype=str)
        else:
            conversions = pd.DataFrame(
                columns=["OP_ID", "SOURCE_ITEM_ID", "DEST_ITEM_ID", "SOURCE_QUANTITY", "DEST_QUANTITY"]
            )
        ops["timestamp"] = self._local_timestamps(ops, "CREATED_DATE", "OP_CODE")
        return ops, items, conversions

    def load_stock_takes(self) -> pd.DataFrame:
        """
        Load physical stock-takes (one row per item per count).

        Columns: ITEM_ID, COUNTED_AT, STORE_1, STORE_2, REFERENCE.
        Counts are entered on the shop floor in local time, so no shift.
        """
        takes = pd.read_excel(self.data_dir / STOCK_TAKES_FILE, dtype=str)
        takes.columns = [c.strip().upper().replace(" ", "_") for c in takes.columns]
        takes["timestamp"] = self.timestamps.parse_series(takes["COUNTED_AT"])
        return takes

    def _local_timestamps(self, df: pd.DataFrame, time_col: str, code_col: str) -> pd.Series:
        parsed = self.timestamps.parse_series(df[time_col])
        codes = df[code_col] if code_col in df.columns else pd.Series(None, index=df.index)
        return pd.Series(
            [
                self.clock.to_local(ts, _none(code)) if ts is not None else None
                for ts, code in zip(parsed, codes)
            ],
            index=df.index,
            dtype=object,
        )

    # --- record assembly ---

    def records_for_item(
        self, item_id: Any, start: Any = None, end: Any = None
    ) -> list[RawEventRecord]:
        """
        Raw records touching `item_id`, plus all of its stock-takes.

        Client-specific handling:
        - A stock operation also writes STOCKOP-coded rows to
          store_transactions (COMMENTS start with "[OP_CODE]"). When the
          operation itself is returned, those rows are left out so the
          movement is counted once.
        - When start/end are given, movements outside the stock-takes that
          bracket [start, end] are left out (MissingBoundaryError if either
          side has no stock-take). Stock-takes are always returned.
        """
        exports = self._exports or self.load_all()
        key = str(item_id)

        operations = self._operations(exports, key)
        applied = {op.code for op in operations if op.active and op.code}
        transactions = [
            tx for tx in self._transactions(exports, key) if _side_effect_of(tx) not in applied
        ]
        snapshots = self._snapshots(exports, key)

        records: list[RawEventRecord] = [*transactions, *operations]
        if start is not None and end is not None:
            span = select_boundaries(snapshots, key, self.timestamps.window(start, end)).span
            records = [r for r in records if span.contains(r.timestamp)]
        records.extend(snapshots)

        logger.debug("Item %s: %d raw records assembled", item_id, len(records))
        return records

    def reconcile_item(self, item_id: Any, start: Any, end: Any) -> LedgerResult:
        records = self.records_for_item(item_id, start, end)
        return LedgerEngine(self.settings).run(records, item_id, start, end)

    def _transactions(self, exports: LoadedExports, key: str) -> list[Transaction]:
        items = exports.transaction_items
        ours = items[items["ITEM_ID"].str.strip() == key]
        lines_by_tx: dict[str, list[TransactionLine]] = {}
        for row in ours.to_dict("records"):
            lines_by_tx.setdefault(str(row["TRANSACTION_ID"]).strip(), []).append(
                TransactionLine(
                    item_id=key,
                    quantity=to_kg(row.get("QUANTITY")),
                    price=to_kg(row.get("PRICE")),
                    total=to_kg(row.get("TOTAL")),
                    active=_is_active(row.get("IS_ACTIVE")),
                )
            )

        records = []
        for row in exports.transactions.to_dict("records"):
            tx_id = str(row["TRANSACTION_ID"]).strip()
            if tx_id not in lines_by_tx:
                continue
            records.append(
                Transaction(
                    id=tx_id,
                    type=_none(row.get("TYPE")),
                    timestamp=row["timestamp"],
                    store_no=to_store_no(row.get("STORE_NO")),
                    lines=lines_by_tx[tx_id],
                    active=_is_active(row.get("IS_ACTIVE")),
                    code=_none(row.get("CODE")),
                    bill_code=_none(row.get("BILL_CODE")),
                    customer=_none(row.get("CUSTOMER_NAME")),
                    comments=_none(row.get("COMMENTS")),
                )
            )
        return records

    def _operations(self, exports: LoadedExports, key: str) -> list[StockOperation]:
        items = exports.operation_items
        ours = items[items["ITEM_ID"].str.strip() == key]
        lines_by_op: dict[str, list[OperationLine]] = {}
        for row in ours.to_dict("records"):
            lines_by_op.setdefault(str(row["OP_ID"]).strip(), []).append(
                OperationLine(
                    item_id=key,
                    quantity=to_kg(row.get("CLEARED_QUANTITY")),
                    store_no=to_store_no(row.get("STORE_NO")),
                    active=_is_active(row.get("IS_ACTIVE")),
                )
            )

        conversions_by_op: dict[str, list[ConversionRecord]] = {}
        for row in exports.conversions.to_dict("records"):
            conversions_by_op.setdefault(str(row["OP_ID"]).strip(), []).append(
                ConversionRecord(
                    source_item_id=str(row.get("SOURCE_ITEM_ID")).strip(),
                    dest_item_id=str(row.get("DEST_ITEM_ID")).strip(),
                    source_quantity=to_kg(row.get("SOURCE_QUANTITY")),
                    dest_quantity=to_kg(row.get("DEST_QUANTITY")),
                    dest_item_name=_none(row.get("DEST_ITEM_NAME")),
                    active=_is_active(row.get("IS_ACTIVE")),
                )
            )

        records = []
        for row in exports.operations.to_dict("records"):
            op_id = str(row["OP_ID"]).strip()
            conversions = conversions_by_op.get(op_id, [])
            is_source = any(c.source_item_id == key for c in conversions)
            if op_id not in lines_by_op and not is_source:
                continue
            records.append(
                StockOperation(
                    id=op_id,
                    op_type=_none(row.get("OP_TYPE")),
                    timestamp=row["timestamp"],
                    store_no=to_store_no(row.get("STORE_NO")),
                    lines=lines_by_op.get(op_id, []),
                    dest_store_no=to_store_no(row.get("DEST_STORE_NO")),
                    wastage=to_kg(row.get("WASTAGE_AMOUNT")) or ZERO,
                    surplus=to_kg(row.get("SURPLUS_AMOUNT")) or ZERO,
                    active=_is_active(row.get("IS_ACTIVE")),
                    code=_none(row.get("OP_CODE")),
                    lorry=_none(row.get("LORRY_NAME")),
                    destination=_none(row.get("DESTINATION")),
                    bill_code=_none(row.get("BILL_CODE")),
                    customer=_none(row.get("CUSTOMER_NAME")),
                    comments=_none(row.get("COMMENTS")),
                    reference_op_id=_none(row.get("REFERENCE_OP_ID")),
                    conversions=conversions,
                )
            )
        return records

    def _snapshots(self, exports: LoadedExports, key: str) -> list[Snapshot]:
        takes = exports.stock_takes
        ours = takes[takes["ITEM_ID"].str.strip() == key]
        snapshots = []
        for row in ours.to_dict("records"):
            store1 = to_kg(row.get("STORE_1"))
            store2 = to_kg(row.get("STORE_2"))
            if store1 is None or store2 is None:
                # A half-filled count is not a usable boundary
                logger.warning("Skipping incomplete stock-take for item %s at %s", key, row["timestamp"])
                continue
            snapshots.append(
                Snapshot(
                    item_id=key,
                    timestamp=row["timestamp"],
                    levels=StoreLevels(store1, store2),
                    reference=_none(row.get("REFERENCE")),
                )
            )
        return snapshots

    # --- quality checks ---

    def _check_transactions(self, df: pd.DataFrame) -> DataQualityReport:
        return (
            DataQualityChecker("store_transactions")
            .check_required(["TRANSACTION_ID", "TYPE", "STORE_NO", "CREATED_DATE"])
            .check_duplicates(["TRANSACTION_ID"])
            .check_codes("TYPE", set(self.settings.classification))
            .check_unparsed("CREATED_DATE", "timestamp")
            .check_inactive()
            .run(df)
        )

    def _check_operations(self, df: pd.DataFrame) -> DataQualityReport:
        return (
            DataQualityChecker("store_stock_operations")
            .check_required(["OP_ID", "OP_TYPE", "STORE_NO", "CREATED_DATE"])
            .check_duplicates(["OP_ID"])
            .check_codes("OP_TYPE", set(self.settings.classification))
            .check_outliers("WASTAGE_AMOUNT", min_val=0)
            .check_outliers("SURPLUS_AMOUNT", min_val=0)
            .check_unparsed("CREATED_DATE", "timestamp")
            .check_inactive()
            .run(df)
        )

    def _check_lines(self, df: pd.DataFrame, name: str, qty_col: str) -> DataQualityReport:
        return (
            DataQualityChecker(name)
            .check_required(["ITEM_ID", qty_col])
            .check_outliers(qty_col, min_val=-10_000, max_val=10_000)
            .check_inactive()
            .run(df)
        )

    def _check_stock_takes(self, df: pd.DataFrame) -> DataQualityReport:
        return (
            DataQualityChecker("stock_takes")
            .check_required(["ITEM_ID", "COUNTED_AT", "STORE_1", "STORE_2"])
            .check_outliers("STORE_1", min_val=0)
            .check_outliers("STORE_2", min_val=0)
            .check_unparsed("COUNTED_AT", "timestamp")
            .run(df)
        )
