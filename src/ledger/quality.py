"""
Data quality checks for raw stock exports.

Runs before normalization so problems in the store tables (missing
timestamps, codes the classification table doesn't know, duplicated join
rows, odd quantities) are reported up front instead of surfacing as a
mysterious reconciliation gap.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

import pandas as pd

Severity = Literal["critical", "warning", "info"]
SEVERITIES: tuple[Severity, ...] = ("critical", "warning", "info")


@dataclass
class DataQualityIssue:
    """One kind of problem in one column of an exported table."""

    column: str
    issue_type: str  # "missing", "unknown_code", "outlier", "duplicate", "unparsed_timestamp", "inactive"
    severity: Severity
    count: int
    percentage: float
    samples: list[Any] = field(default_factory=list)
    description: str = ""

    def __str__(self) -> str:
        return f"{self.column}: {self.description or self.issue_type}"


@dataclass
class DataQualityReport:
    """Issues found in one exported table (store_transactions, stock_takes, ...)."""

    table: str
    total_rows: int
    issues: list[DataQualityIssue] = field(default_factory=list)

    @property
    def has_critical_issues(self) -> bool:
        return any(i.severity == "critical" for i in self.issues)

    def of_type(self, issue_type: str) -> list[DataQualityIssue]:
        return [i for i in self.issues if i.issue_type == issue_type]

    def summary(self) -> dict:
        """Counts per severity, plus the critical issues spelled out for logs."""
        by_severity = Counter(i.severity for i in self.issues)
        return {
            "table": self.table,
            "rows": self.total_rows,
            **{severity: by_severity.get(severity, 0) for severity in SEVERITIES},
            "critical_issues": [str(i) for i in self.issues if i.severity == "critical"],
        }


def _pct(count: int, df: pd.DataFrame) -> float:
    return (count / len(df)) * 100 if len(df) else 0.0


class DataQualityChecker:
    """
    Collects checks for one export and runs them into a report.

    Checks are added with the check_* builders (or add_check for a custom
    function) and return self, so they chain:

        report = (
            DataQualityChecker("store_transactions")
            .check_required(["TRANSACTION_ID", "TYPE", "CREATED_DATE"])
            .check_codes("TYPE", known_codes)
            .run(df)
        )
    """

    def __init__(self, table: str):
        self.table = table
        self._checks: list[Callable[[pd.DataFrame], list[DataQualityIssue]]] = []

    def add_check(
        self, check_fn: Callable[[pd.DataFrame], list[DataQualityIssue]]
    ) -> "DataQualityChecker":
        self._checks.append(check_fn)
        return self

    def check_required(self, columns: list[str], severity: Severity = "critical") -> "DataQualityChecker":
        """Columns that must be present and filled on every row."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            issues = []
            for col in columns:
                if col not in df.columns:
                    issues.append(
                        DataQualityIssue(
                            column=col,
                            issue_type="missing",
                            severity=severity,
                            count=len(df),
                            percentage=100.0,
                            description=f"column {col} is not in the export",
                        )
                    )
                    continue
                missing = int(df[col].isna().sum())
                if missing > 0:
                    issues.append(
                        DataQualityIssue(
                            column=col,
                            issue_type="missing",
                            severity=severity,
                            count=missing,
                            percentage=_pct(missing, df),
                            description=f"{missing:,} rows without {col}",
                        )
                    )
            return issues

        return self.add_check(check)

    def check_duplicates(self, key_columns: list[str], severity: Severity = "warning") -> "DataQualityChecker":
        """Rows repeated on their key (typical of exports built from joins)."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if not set(key_columns) <= set(df.columns):
                return []
            dupes = int(df.duplicated(subset=key_columns, keep="first").sum())
            if dupes == 0:
                return []
            samples = df.loc[df.duplicated(subset=key_columns), key_columns[0]].head(5).tolist()
            return [
                DataQualityIssue(
                    column=", ".join(key_columns),
                    issue_type="duplicate",
                    severity=severity,
                    count=dupes,
                    percentage=_pct(dupes, df),
                    samples=samples,
                    description=f"{dupes:,} repeated rows; kept the first of each",
                )
            ]

        return self.add_check(check)

    def check_codes(
        self, column: str, known_codes: set[str], severity: Severity = "warning"
    ) -> "DataQualityChecker":
        """Type codes the classification table doesn't know (they become Unknown)."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if column not in df.columns:
                return []
            values = df[column].dropna()
            if len(values) == 0:
                return []
            as_text = values.map(_code_text).astype(str)
            unknown_mask = ~as_text.str.lower().isin({c.lower() for c in known_codes})
            unknown = int(unknown_mask.sum())
            if unknown == 0:
                return []
            return [
                DataQualityIssue(
                    column=column,
                    issue_type="unknown_code",
                    severity=severity,
                    count=unknown,
                    percentage=_pct(unknown, df),
                    samples=sorted(set(as_text[unknown_mask]))[:5],
                    description=f"{unknown:,} rows with unrecognized codes; they will show as Unknown",
                )
            ]

        return self.add_check(check)

    def check_outliers(
        self,
        column: str,
        min_val: float | None = None,
        max_val: float | None = None,
        severity: Severity = "warning",
    ) -> "DataQualityChecker":
        """Quantities outside the expected range."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if column not in df.columns:
                return []
            values = pd.to_numeric(df[column], errors="coerce")
            mask = pd.Series(False, index=df.index)
            if min_val is not None:
                mask |= values < min_val
            if max_val is not None:
                mask |= values > max_val
            outliers = int(mask.sum())
            if outliers == 0:
                return []
            return [
                DataQualityIssue(
                    column=column,
                    issue_type="outlier",
                    severity=severity,
                    count=outliers,
                    percentage=_pct(outliers, df),
                    samples=df.loc[mask, column].head(5).tolist(),
                    description=f"{outliers:,} values outside expected range",
                )
            ]

        return self.add_check(check)

    def check_unparsed(
        self, original_col: str, parsed_col: str, severity: Severity = "warning"
    ) -> "DataQualityChecker":
        """Values present in the raw column that the parser could not read."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if original_col not in df.columns or parsed_col not in df.columns:
                return []
            unparsed = df[original_col].notna() & df[parsed_col].isna()
            count = int(unparsed.sum())
            if count == 0:
                return []
            return [
                DataQualityIssue(
                    column=original_col,
                    issue_type="unparsed_timestamp",
                    severity=severity,
                    count=count,
                    percentage=_pct(count, df),
                    samples=df.loc[unparsed, original_col].head(5).tolist(),
                    description=f"{count:,} timestamps couldn't be parsed; rows skipped",
                )
            ]

        return self.add_check(check)

    def check_inactive(self, column: str = "IS_ACTIVE") -> "DataQualityChecker":
        """Soft-deleted rows (informational; they never reach the ledger)."""

        def check(df: pd.DataFrame) -> list[DataQualityIssue]:
            if column not in df.columns:
                return []
            inactive = int((pd.to_numeric(df[column], errors="coerce").fillna(1) == 0).sum())
            if inactive == 0:
                return []
            return [
                DataQualityIssue(
                    column=column,
                    issue_type="inactive",
                    severity="info",
                    count=inactive,
                    percentage=_pct(inactive, df),
                    description=f"{inactive:,} soft-deleted rows excluded",
                )
            ]

        return self.add_check(check)

    def run(self, df: pd.DataFrame) -> DataQualityReport:
        all_issues = []
        for check_fn in self._checks:
            all_issues.extend(check_fn(df))
        return DataQualityReport(table=self.table, total_rows=len(df), issues=all_issues)


def _code_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
