"""Credential pool arbitration for upstream model providers.

Each provider has a small pool of interchangeable API keys. Every key shares
the same daily cap, and each turn is routed to the least-used key of the day.

Selection reads the counters and then decides, without a lock: two
concurrent turns may pick the same key, so the cap can be exceeded by at most
the number of turns in flight. Usage is only confirmed after a turn produced
output.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Union

from services.counters import UsageCounters, credential_usage_key

logger = logging.getLogger(__name__)

MAX_CREDENTIALS = 5
CREDENTIAL_DAILY_CAP = int(os.getenv("CREDENTIAL_DAILY_CAP", "50"))


def load_credentials(env_prefix: str) -> List[str]:
    """Read ``<PREFIX>_1`` .. ``<PREFIX>_5``, falling back to a bare ``<PREFIX>``."""
    keys = [os.getenv(f"{env_prefix}_{i}") for i in range(1, MAX_CREDENTIALS + 1)]
    keys = [key for key in keys if key]
    if not keys and os.getenv(env_prefix):
        keys = [os.getenv(env_prefix)]
    return keys


@dataclass(frozen=True)
class CredentialLease:
    """A selected credential. Only the index is ever logged."""
    api_key: str = field(repr=False)
    index: int
    usage: int


@dataclass(frozen=True)
class PoolExhausted:
    """Every configured credential has hit the daily cap (or none is configured)."""
    provider: str
    message: str = "Daily request limit reached. Please try again tomorrow."


@dataclass(frozen=True)
class PoolStatus:
    total: int
    remaining: int


class CredentialPool:
    """Least-used selection over one provider's credentials."""

    def __init__(
        self,
        provider: str,
        credentials: List[str],
        counters: UsageCounters,
        daily_cap: int = CREDENTIAL_DAILY_CAP,
    ):
        self.provider = provider
        self._credentials = list(credentials)
        self.counters = counters
        self.daily_cap = daily_cap

    @classmethod
    def from_env(cls, provider: str, env_prefix: str, counters: UsageCounters) -> "CredentialPool":
        return cls(provider, load_credentials(env_prefix), counters)

    @property
    def size(self) -> int:
        return len(self._credentials)

    async def _usages(self) -> List[int]:
        keys = [credential_usage_key(self.provider, i) for i in range(1, self.size + 1)]
        return await self.counters.get_many(keys)

    async def select_credential(self) -> Union[CredentialLease, PoolExhausted]:
        """
        Pick the credential with the lowest usage today among those below the cap.

        Ties go to the lowest index.

        Returns:
            CredentialLease for the chosen key, or PoolExhausted
        """
        if not self._credentials:
            logger.error(f"No credentials configured for provider {self.provider}")
            return PoolExhausted(provider=self.provider)

        usages = await self._usages()

        best_index = None
        best_usage = None
        for position, usage in enumerate(usages):
            if usage >= self.daily_cap:
                continue
            if best_usage is None or usage < best_usage:
                best_index = position
                best_usage = usage

        if best_index is None:
            logger.warning(f"Credential pool for {self.provider} exhausted for today")
            return PoolExhausted(provider=self.provider)

        logger.debug(f"Selected {self.provider} credential #{best_index + 1} (usage {best_usage})")
        return CredentialLease(
            api_key=self._credentials[best_index],
            index=best_index + 1,
            usage=best_usage,
        )

    async def confirm_usage(self, index: int) -> int:
        """Charge one call to the credential at ``index`` (1-based)."""
        return await self.counters.increment_usage(credential_usage_key(self.provider, index))

    async def get_pool_status(self) -> PoolStatus:
        """Aggregate remaining capacity for display; may lag concurrent writers."""
        total = self.size * self.daily_cap
        used = sum(await self._usages()) if self.size else 0
        return PoolStatus(total=total, remaining=max(0, total - used))
