"""
Order-record store.

`OrderStore` is the interface strategies use. `InMemoryOrderStore` keeps
records in a dict and, when given a state directory, mirrors them to a JSON
file written atomically (tmp file + replace) from an executor so the event
loop never blocks on disk IO.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from mmbot.core.models import OrderRecord

log = logging.getLogger("mmbot")


class OrderStore(Protocol):
    async def find(self, **filters: Any) -> List[OrderRecord]:
        ...

    async def create(self, **fields: Any) -> OrderRecord:
        ...

    async def save(self, record: OrderRecord) -> None:
        ...


def _matches(record: OrderRecord, filters: Dict[str, Any]) -> bool:
    for name, expected in filters.items():
        if getattr(record, name) != expected:
            return False
    return True


class InMemoryOrderStore:
    """
    Dict-backed store with optional JSON persistence.

    Usage:
        store = InMemoryOrderStore(pair="ADM/USDT", state_dir="state")
        await store.load()
        rec = await store.create(id="1", pair="ADM/USDT", side="buy", ...)
        active = await store.find(purpose=OrderPurpose.DEPTH, is_processed=False)
    """

    def __init__(self, pair: Optional[str] = None, state_dir: Optional[str] = None) -> None:
        self._records: Dict[str, OrderRecord] = {}
        self._lock = asyncio.Lock()
        self.path: Optional[Path] = None
        if state_dir:
            safe = (pair or "orders").replace(":", "_").replace("/", "_")
            self.path = Path(state_dir) / f"orders_{safe}.json"
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def __len__(self) -> int:
        return len(self._records)

    async def find(self, **filters: Any) -> List[OrderRecord]:
        return [r for r in self._records.values() if _matches(r, filters)]

    async def create(self, **fields: Any) -> OrderRecord:
        record = OrderRecord(**fields).bind(self)
        self._records[str(record.id)] = record
        await self._persist()
        return record

    async def save(self, record: OrderRecord) -> None:
        self._records[str(record.id)] = record.bind(self)
        await self._persist()

    async def load(self) -> int:
        """Load records from disk. Returns the number of records loaded."""
        if self.path is None or not self.path.exists():
            return 0
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self.path.read_text)
            rows = json.loads(raw)
        except (OSError, ValueError) as exc:
            log.error(json.dumps({"event": "order_store_load_error", "path": str(self.path), "err": str(exc)}))
            return 0
        for row in rows:
            record = OrderRecord(**row).bind(self)
            self._records[str(record.id)] = record
        return len(rows)

    async def _persist(self) -> None:
        if self.path is None:
            return
        rows = [r.to_dict() for r in self._records.values()]
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write, rows)

    def _write(self, rows: List[Dict[str, Any]]) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(rows, indent=2))
            tmp.replace(self.path)
        except OSError as exc:
            log.error(json.dumps({"event": "order_store_save_error", "path": str(self.path), "err": str(exc)}))
