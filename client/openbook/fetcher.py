import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from openbook.errors import MissingAccount
from openbook.rpc import Rpc
from openbook.utils.solana import AccountInfo


class AccountFetcher(ABC):
    @abstractmethod
    async def fetch(self, address: Pubkey) -> Optional[AccountInfo]:
        ...

    @abstractmethod
    async def fetch_multiple(self, addresses: Sequence[Pubkey]) -> List[Optional[AccountInfo]]:
        ...

    async def fetch_existing(self, address: Pubkey) -> AccountInfo:
        account = await self.fetch(address)
        if account is None:
            raise MissingAccount(f"Account {address} does not exist")
        return account


class RpcAccountFetcher(AccountFetcher):
    def __init__(self, rpc: Rpc):
        self.rpc = rpc

    async def fetch(self, address: Pubkey) -> Optional[AccountInfo]:
        return await self.rpc.get_account_info(address)

    async def fetch_multiple(self, addresses: Sequence[Pubkey]) -> List[Optional[AccountInfo]]:
        return await self.rpc.get_multiple_accounts(addresses)


class CachedAccountFetcher(AccountFetcher):
    """Serves accounts younger than ``max_age`` seconds without touching ``inner``."""

    def __init__(self, inner: AccountFetcher, max_age: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.inner = inner
        self.max_age = max_age
        self.clock = clock
        self._cache: Dict[Pubkey, Tuple[float, Optional[AccountInfo]]] = {}

    def clear_cache(self):
        self._cache.clear()

    def _cached(self, address: Pubkey):
        entry = self._cache.get(address)
        if entry is None:
            return False, None
        ts, account = entry
        if self.clock() - ts >= self.max_age:
            return False, None
        return True, account

    async def fetch(self, address: Pubkey) -> Optional[AccountInfo]:
        hit, account = self._cached(address)
        if hit:
            return account
        account = await self.inner.fetch(address)
        self._cache[address] = (self.clock(), account)
        return account

    async def fetch_multiple(self, addresses: Sequence[Pubkey]) -> List[Optional[AccountInfo]]:
        results: Dict[Pubkey, Optional[AccountInfo]] = {}
        missing = []
        for address in addresses:
            hit, account = self._cached(address)
            if hit:
                results[address] = account
            elif address not in missing:
                missing.append(address)

        if missing:
            fetched = await self.inner.fetch_multiple(missing)
            now = self.clock()
            for address, account in zip(missing, fetched):
                self._cache[address] = (now, account)
                results[address] = account

        return [results[address] for address in addresses]
