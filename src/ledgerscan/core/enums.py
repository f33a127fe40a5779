from enum import Enum


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"
    AIRDROP = "airdrop"
    DISPOSAL = "disposal"


class LegSource(str, Enum):
    TX = "tx"
    BLOCK = "block"
    NEAR_BLOCK = "near_block"
    ORACLE = "oracle"
    UNRESOLVED = "unresolved"


class ResultStatus(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"


class HolderStatus(str, Enum):
    SOLD_ALL = "SOLD ALL"
    SOLD_SOME = "SOLD SOME"
    BOUGHT_MORE = "BOUGHT MORE"
    HOLD = "HOLD"


# lookback in seconds, 0 = full history
PNL_WINDOWS = {
    "24h": 60 * 60 * 24,
    "7d": 60 * 60 * 24 * 7,
    "30d": 60 * 60 * 24 * 30,
    "365d": 60 * 60 * 24 * 365,
    "all": 0,
}
