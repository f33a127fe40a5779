from ledgerscan.ports.chain_data_port import (
    ACTION_ERC20,
    ACTION_INTERNAL,
    ACTION_NFT,
    ACTION_NORMAL,
    ChainDataPort,
)
from ledgerscan.core.dto import (
    ContractCreation,
    RawErc20Transfer,
    RawNativeTransfer,
    RawNftTransfer,
    TokenMeta,
    TransferEvent,
)
from typing import Any, Dict, List, Optional


def _topic(addr: str) -> str:
    return "0x" + "0" * 24 + addr.lower()[2:]


def log_row(token_address: str, e: TransferEvent) -> Dict[str, Any]:
    """Render an event the way the explorer's getLogs returns it."""
    return {
        "address": token_address.lower(),
        "topics": [
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
            _topic(e.from_address),
            _topic(e.to_address),
        ],
        "data": hex(e.value_raw),
        "blockNumber": hex(e.block_number),
        "logIndex": hex(e.log_index),
        "transactionHash": e.tx_hash,
    }


class StaticChainAdapter(ChainDataPort):
    """
    In-memory explorer for tests and offline runs. Pagination and block
    filtering behave like the real API.
    """

    def __init__(self,
                 token_events: Optional[Dict[str, List[TransferEvent]]] = None,
                 native_transfers: Optional[List[RawNativeTransfer]] = None,
                 erc20_transfers: Optional[List[RawErc20Transfer]] = None,
                 nft_transfers: Optional[List[RawNftTransfer]] = None,
                 token_meta: Optional[Dict[str, TokenMeta]] = None,
                 creations: Optional[Dict[str, ContractCreation]] = None,
                 total_supply: Optional[Dict[str, int]] = None,
                 ts_to_block: Optional[Dict[int, int]] = None,
                 latest_block: int = 0,
                 ):
        self._events = {k.lower(): list(v) for k, v in (token_events or {}).items()}
        self._native = native_transfers or []
        self._erc20 = erc20_transfers or []
        self._nft = nft_transfers or []
        self._meta = {k.lower(): v for k, v in (token_meta or {}).items()}
        self._creations = {k.lower(): v for k, v in (creations or {}).items()}
        self._supply = {k.lower(): v for k, v in (total_supply or {}).items()}
        self._ts_to_block = ts_to_block or {}
        self._latest_block = latest_block
        self.calls: List[tuple] = []

    @staticmethod
    def _page(items: List[Any], page: int, offset: int) -> List[Any]:
        start = (page - 1) * offset
        return items[start:start + offset]

    async def get_logs(self, address, topic0, from_block, to_block, page, offset):
        self.calls.append(("getLogs", from_block, to_block, page))
        events = [
            e for e in self._events.get(address.lower(), [])
            if from_block <= e.block_number <= to_block
        ]
        events.sort(key=lambda e: e.sort_key)
        return [log_row(address, e) for e in self._page(events, page, offset)]

    async def get_account_records(self, action, address, start_block, end_block, page, offset, sort="asc"):
        self.calls.append((action, start_block, end_block, page))
        ad = address.lower()
        if action in (ACTION_NORMAL, ACTION_INTERNAL):
            internal = action == ACTION_INTERNAL
            items = [t for t in self._native if t.internal == internal]
            render = self._native_row
        elif action == ACTION_ERC20:
            items = list(self._erc20)
            render = self._erc20_row
        elif action == ACTION_NFT:
            items = list(self._nft)
            render = self._nft_row
        else:
            return []
        items = [
            t for t in items
            if start_block <= t.block_number <= end_block
            and (t.from_address.lower() == ad or t.to_address.lower() == ad)
        ]
        items.sort(key=lambda x: (x.block_number, x.timestamp), reverse=(sort == "desc"))
        return [render(t) for t in self._page(items, page, offset)]

    async def get_contract_creation(self, address):
        return self._creations.get(address.lower())

    async def get_total_supply(self, token_address):
        return self._supply.get(token_address.lower())

    async def get_token_meta(self, token_address):
        return self._meta.get(token_address.lower(), TokenMeta(token_address.lower(), None, None))

    async def get_block_by_timestamp(self, unix_ts, closest="before"):
        if int(unix_ts) in self._ts_to_block:
            return self._ts_to_block[int(unix_ts)]
        return self._latest_block

    # ---------- explorer-shaped rows ----------

    @staticmethod
    def _native_row(t: RawNativeTransfer) -> Dict[str, Any]:
        return {
            "hash": t.tx_hash,
            "blockNumber": str(t.block_number),
            "timeStamp": str(t.timestamp),
            "from": t.from_address,
            "to": t.to_address,
            "value": str(t.value_wei),
            "isError": "0",
        }

    @staticmethod
    def _erc20_row(t: RawErc20Transfer) -> Dict[str, Any]:
        return {
            "hash": t.tx_hash,
            "blockNumber": str(t.block_number),
            "timeStamp": str(t.timestamp),
            "from": t.from_address,
            "to": t.to_address,
            "contractAddress": t.token_address,
            "value": str(t.value_raw),
            "tokenSymbol": t.token_symbol or "",
            "tokenDecimal": "" if t.token_decimals is None else str(t.token_decimals),
            "logIndex": str(t.log_index),
        }

    @staticmethod
    def _nft_row(t: RawNftTransfer) -> Dict[str, Any]:
        return {
            "hash": t.tx_hash,
            "blockNumber": str(t.block_number),
            "timeStamp": str(t.timestamp),
            "from": t.from_address,
            "to": t.to_address,
            "contractAddress": t.contract_address,
            "tokenID": t.token_id,
            "tokenName": t.collection_name or "",
        }
