from __future__ import annotations

from abc import ABC, abstractmethod

from ledgerscan.core.dto import SpotQuote


class PricePort(ABC):

    @abstractmethod
    async def get_spot_quote(self, token_address: str) -> SpotQuote:
        """Best effort; a zero quote means unknown."""
        raise NotImplementedError
