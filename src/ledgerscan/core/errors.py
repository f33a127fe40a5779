class LedgerScanError(Exception):
    pass


class DataSourceError(LedgerScanError):
    pass


class RateLimitError(DataSourceError):
    pass


class RangeTooLargeError(LedgerScanError):
    """Upstream refused a block range or result window as too large."""


class InvalidAddressError(LedgerScanError, ValueError):
    pass


class ComputationError(LedgerScanError):
    pass
