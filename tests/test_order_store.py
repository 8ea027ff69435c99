"""
Tests for InMemoryOrderStore and OrderRecord updates.
"""

import json

import pytest

from mmbot.core.models import OrderPurpose, OrderSide, OrderState
from mmbot.state.order_store import InMemoryOrderStore

PAIR = "ADM/USDT"


async def create(store, order_id, **fields):
    values = dict(
        id=order_id, pair=PAIR, side="buy", purpose="depth",
        price=1.5, base_amount=10.0, quote_amount=15.0,
    )
    values.update(fields)
    return await store.create(**values)


@pytest.mark.asyncio
async def test_find_by_fields():
    store = InMemoryOrderStore(pair=PAIR)
    await create(store, "1")
    await create(store, "2", purpose="liquidity")
    await create(store, "3", is_processed=True)

    active_depth = await store.find(pair=PAIR, purpose=OrderPurpose.DEPTH, is_processed=False)
    assert [r.id for r in active_depth] == ["1"]
    assert len(await store.find(side=OrderSide.BUY)) == 3
    assert len(store) == 3


@pytest.mark.asyncio
async def test_record_defaults():
    store = InMemoryOrderStore()
    record = await create(store, "1")
    assert record.state is OrderState.OPEN
    assert record.base_amount_left == 10.0
    assert record.is_active


@pytest.mark.asyncio
async def test_update_rejects_unknown_field():
    store = InMemoryOrderStore()
    record = await create(store, "1")
    with pytest.raises(AttributeError):
        await record.update(nonsense=1)


@pytest.mark.asyncio
async def test_persist_and_load(tmp_path):
    store = InMemoryOrderStore(pair=PAIR, state_dir=str(tmp_path))
    record = await create(store, "1", sub_purpose="ss")
    await record.update({"state": OrderState.CANCELLED, "is_processed": True}, persist=True)

    path = tmp_path / "orders_ADM_USDT.json"
    rows = json.loads(path.read_text())
    assert rows[0]["state"] == "cancelled"
    assert rows[0]["side"] == "buy"

    reloaded = InMemoryOrderStore(pair=PAIR, state_dir=str(tmp_path))
    assert await reloaded.load() == 1
    [restored] = await reloaded.find(id="1")
    assert restored.state is OrderState.CANCELLED
    assert restored.is_processed
    assert restored.sub_purpose == "ss"


@pytest.mark.asyncio
async def test_load_corrupt_file(tmp_path):
    (tmp_path / "orders_ADM_USDT.json").write_text("{not json")
    store = InMemoryOrderStore(pair=PAIR, state_dir=str(tmp_path))
    assert await store.load() == 0


@pytest.mark.asyncio
async def test_load_without_state_dir():
    assert await InMemoryOrderStore(pair=PAIR).load() == 0
