from datetime import datetime, timezone

import pytest
from temporalio.testing import WorkflowEnvironment

from tradeloop.domain.orders import DeliveryType, Order, OrderStatus


@pytest.fixture
async def temporal_env():
    async with await WorkflowEnvironment.start_time_skipping() as env:
        yield env


class FakeHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimer:
    """Manually advanced clock standing in for loop.call_later."""

    def __init__(self):
        self.now = 0.0
        self.scheduled = []

    def call_later(self, delay, callback):
        handle = FakeHandle(self.now + delay, callback)
        self.scheduled.append(handle)
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.scheduled if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.scheduled.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


@pytest.fixture
def fake_timer():
    return FakeTimer()


@pytest.fixture
def make_order():
    def _make(status=OrderStatus.PENDING, exchange_code=None, **overrides):
        data = dict(
            id="ord-1",
            buyer="Asha Traders",
            buyer_phone="9800000001",
            product="Basmati rice",
            quantity="25 kg",
            total_price=2400.0,
            status=status,
            delivery_type=DeliveryType.PICKUP,
            exchange_code=exchange_code,
            order_date=datetime(2026, 1, 5, tzinfo=timezone.utc),
        )
        data.update(overrides)
        return Order(**data)
    return _make
