from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ledgerscan.core.dto import ContractCreation, TokenMeta

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# account-history streams (explorer "action" names)
ACTION_NORMAL = "txlist"
ACTION_INTERNAL = "txlistinternal"
ACTION_ERC20 = "tokentx"
ACTION_NFT = "tokennfttx"


class ChainDataPort(ABC):
    """
    Abstract explorer API. One call = one upstream request; pagination,
    retries and windowing live in the crawler.

    Rows are returned as untyped explorer JSON; numeric fields stay strings.
    """

    # --- Transfer logs ---

    @abstractmethod
    async def get_logs(
        self,
        address: str,
        topic0: str,
        from_block: int,
        to_block: int,
        page: int,
        offset: int,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    # --- account history (normal / internal / ERC-20 / NFT) ---

    @abstractmethod
    async def get_account_records(
        self,
        action: str,
        address: str,
        start_block: int,
        end_block: int,
        page: int,
        offset: int,
        sort: str = "asc",
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    # --- contract / token facts ---

    @abstractmethod
    async def get_contract_creation(self, address: str) -> Optional[ContractCreation]:
        raise NotImplementedError

    @abstractmethod
    async def get_total_supply(self, token_address: str) -> Optional[int]:
        raise NotImplementedError

    @abstractmethod
    async def get_token_meta(self, token_address: str) -> TokenMeta:
        raise NotImplementedError

    # --- Blocks / time window helpers ---

    @abstractmethod
    async def get_block_by_timestamp(self, unix_ts: int, closest: str = "before") -> int:
        raise NotImplementedError
