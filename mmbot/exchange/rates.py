"""
Currency-rate conversion backed by an HTTP rates endpoint.

The endpoint returns ``{"success": true, "result": {"ADM/USD": 0.02, ...}}``.
Rates are refreshed by ``update_rates()`` and kept until the next
successful refresh; ``convert`` is synchronous and reads the last table.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Dict, Optional

import httpx

from mmbot.core.models import ConversionResult

log = logging.getLogger("mmbot")


class RatesService:
    def __init__(self, url: Optional[str] = None, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        # A shared client passed in is not closed by close()
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        self._rates: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @property
    def rates(self) -> Dict[str, float]:
        return dict(self._rates)

    def set_rates(self, rates: Dict[str, float]) -> None:
        self._rates = {k.upper(): float(v) for k, v in rates.items()}

    async def update_rates(self) -> bool:
        """Refresh the rate table. Returns False and keeps old rates on failure."""
        if not self.url:
            # Static table set with set_rates()
            return False
        async with self._lock:
            try:
                resp = await self.client.get(self.url)
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                log.warning(json.dumps({"event": "rates_update_failed", "url": self.url, "err": str(exc)}))
                return False
            result = data.get("result") if isinstance(data, dict) else None
            if not isinstance(result, dict) or not data.get("success"):
                log.warning(json.dumps({"event": "rates_update_failed", "url": self.url, "err": "bad payload"}))
                return False
            self.set_rates(result)
            return True

    def get_rate(self, from_coin: str, to_coin: str) -> float:
        from_coin, to_coin = from_coin.upper(), to_coin.upper()
        if from_coin == to_coin:
            return 1.0
        direct = self._rates.get(f"{from_coin}/{to_coin}")
        if direct:
            return direct
        reverse = self._rates.get(f"{to_coin}/{from_coin}")
        if reverse:
            return 1 / reverse
        price_from = self._rates.get(f"{from_coin}/USD")
        price_to = self._rates.get(f"{to_coin}/USD")
        if price_from and price_to:
            return price_from / price_to
        return math.nan

    def convert(self, from_coin: str, to_coin: str, amount: float = 1.0) -> ConversionResult:
        rate = self.get_rate(from_coin, to_coin)
        return ConversionResult(out_amount=rate * amount, rate=rate)
