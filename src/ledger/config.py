from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import EventType

DEFAULT_CLASSIFICATION: dict[str, EventType] = {
    # store transaction types
    "Buying": EventType.BUYING,
    "Selling": EventType.SELLING,
    "AdjIn": EventType.ADJ_IN,
    "AdjOut": EventType.ADJ_OUT,
    "Opening": EventType.OPENING,
    "TransferIn": EventType.TRANSFER_IN,
    "TransferOut": EventType.TRANSFER_OUT,
    "StockTake": EventType.STOCK_TAKE,
    "StockClear": EventType.STOCK_CLEAR,
    "Wastage": EventType.WASTAGE,
    "Return": EventType.STOCK_RETURN,
    "Conversion": EventType.CONVERSION,
    "Transfer": EventType.TRANSFER,
    # stock operation OP_TYPE codes
    "1": EventType.FULL_CLEAR,
    "2": EventType.PARTIAL_CLEAR,
    "3": EventType.CLEAR_WITH_SALES,
    "4": EventType.CLEAR_WITH_SALES,
    "5": EventType.TRANSFER,
    "6": EventType.TRANSFER,
    "7": EventType.CLEAR_WITH_LORRY,
    "8": EventType.CLEAR_WITH_LORRY,
    "9": EventType.CONVERSION,
    "11": EventType.STOCK_RETURN,
    "12": EventType.TRANSFER,
}

DEFAULT_ERROR_PRONE = [
    EventType.ADJ_IN,
    EventType.ADJ_OUT,
    EventType.CONVERSION,
    EventType.STOCK_TAKE,
    EventType.TRANSFER_S1_S2,
    EventType.TRANSFER_S2_S1,
    EventType.TRANSFER_IN,
    EventType.TRANSFER_OUT,
    EventType.UNKNOWN,
]


class LedgerSettings(BaseSettings):
    epsilon: Decimal = Decimal("0.001")
    classification: dict[str, EventType] = Field(
        default_factory=lambda: dict(DEFAULT_CLASSIFICATION)
    )
    error_prone_types: list[EventType] = Field(
        default_factory=lambda: list(DEFAULT_ERROR_PRONE)
    )
    max_issues: int = 10
    # Rows with these code prefixes/infixes were stamped in UTC by the server
    server_time_prefixes: list[str] = ["ADJ-", "STOCKOP-", "SLO-", "WEB-", "RETURN-EXP-", "TX-"]
    server_time_infixes: list[str] = ["-WEB-", "-SLO-"]
    server_time_offset_minutes: int = 330
    period_limits: dict[str, int] = {
        "Daily": 100,
        "Weekly": 700,
        "Monthly": 3043,
        "Yearly": 36500,
    }

    model_config = SettingsConfigDict(env_file=".env", env_prefix="LEDGER_", extra="ignore")


settings = LedgerSettings()
