import asyncio

import httpx
import pytest

from tradeloop.domain.profiles import Address
from tradeloop.geocoding.debounce import DebounceController
from tradeloop.geocoding.forms import AddressForm, ResolutionStatus
from tradeloop.geocoding.models import ResolvedLocation
from tradeloop.geocoding.resolver import AddressResolver


async def test_only_last_keystroke_resolves(fake_timer):
    calls = []
    results = []

    async def resolve(text):
        calls.append((text, fake_timer.now))
        return text

    controller = DebounceController("city", resolve, results.append, quiet_period=1.0, timer=fake_timer)

    controller.submit("M")
    fake_timer.advance(0.2)
    controller.submit("Mu")
    fake_timer.advance(0.7)
    controller.submit("Mum")
    fake_timer.advance(0.99)
    await controller.drain()
    assert calls == []

    fake_timer.advance(0.02)
    await controller.drain()

    assert len(calls) == 1
    text, fired_at = calls[0]
    assert text == "Mum"
    assert fired_at >= 1.9 - 1e-9
    assert results == ["Mum"]


async def test_gap_longer_than_quiet_period_fires_in_between(fake_timer):
    # Keystrokes at 0 ms, 200 ms and 1300 ms: the 1100 ms gap lets "Mu" fire at 1200 ms
    calls = []
    results = []

    async def resolve(text):
        calls.append((text, fake_timer.now))
        return text

    controller = DebounceController("city", resolve, results.append, quiet_period=1.0, timer=fake_timer)

    controller.submit("M")
    fake_timer.advance(0.2)
    controller.submit("Mu")
    fake_timer.advance(1.1)
    controller.submit("Mum")
    fake_timer.advance(1.0)
    await controller.drain()

    assert [text for text, _ in calls] == ["Mu", "Mum"]
    assert calls[-1][1] >= 2.3 - 1e-9
    assert results[-1] == "Mum"


async def test_stale_response_never_overwrites_newer(fake_timer):
    gates = {"A": asyncio.Event(), "B": asyncio.Event()}
    results = []

    async def resolve(text):
        await gates[text].wait()
        return text

    controller = DebounceController("city", resolve, results.append, quiet_period=1.0, timer=fake_timer)

    first = controller.submit("A")
    fake_timer.advance(1.0)
    await asyncio.sleep(0)
    second = controller.submit("B")
    fake_timer.advance(1.0)
    await asyncio.sleep(0)
    assert second > first

    # B answers first, A straggles in afterwards
    gates["B"].set()
    await asyncio.sleep(0)
    gates["A"].set()
    await controller.drain()

    assert results == ["B"]


async def test_cancel_orphans_in_flight(fake_timer):
    gate = asyncio.Event()
    results = []

    async def resolve(text):
        await gate.wait()
        return text

    controller = DebounceController("city", resolve, results.append, quiet_period=0.5, timer=fake_timer)
    controller.submit("Pune")
    fake_timer.advance(0.5)
    await asyncio.sleep(0)
    controller.cancel()
    gate.set()
    await controller.drain()

    assert results == []
    assert not controller.pending


async def test_per_call_delay(fake_timer):
    results = []

    async def resolve(text):
        return text

    controller = DebounceController("city", resolve, results.append, quiet_period=1.0, timer=fake_timer)
    controller.submit("Pune", delay=0.5)
    fake_timer.advance(0.5)
    await controller.drain()
    assert results == ["Pune"]


# --- AddressForm ---

SEARCH_RESULTS = {
    "Mumbai": [{"lat": "19.07", "lon": "72.87", "display_name": "Mumbai, Mumbai Suburban, Maharashtra, India"}],
    "Pune": [{"lat": "18.52", "lon": "73.85", "display_name": "Pune, Pune District, Maharashtra, India"}],
}


class SearchUpstream:
    def __init__(self):
        self.queries = []

    def __call__(self, request):
        query = request.url.params["q"]
        self.queries.append(query)
        city = query.split(",")[0]
        return httpx.Response(200, json=SEARCH_RESULTS.get(city, []))


@pytest.fixture
def upstream():
    return SearchUpstream()


@pytest.fixture
def form(upstream, fake_timer):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream), base_url="https://geo.test")
    resolver = AddressResolver(client, max_attempts=1, retry_wait=0)
    return AddressForm(resolver, Address(street="14 FC Road", pincode="411005"), timer=fake_timer)


async def test_short_city_never_reaches_network(form, upstream, fake_timer):
    validation = form.set_city("M")
    fake_timer.advance(5)
    await form.geolocation_lookup.drain()

    assert not validation.valid
    assert upstream.queries == []
    assert form.status == ResolutionStatus.IDLE


async def test_city_typing_resolves_and_folds(form, upstream, fake_timer):
    for prefix in ("Mu", "Mum", "Mumb", "Mumba", "Mumbai"):
        form.set_city(prefix)
        fake_timer.advance(0.3)
    assert form.status == ResolutionStatus.DEBOUNCING

    fake_timer.advance(1.0)
    await form.geolocation_lookup.drain()

    assert upstream.queries == ["Mumbai, India"]
    assert form.status == ResolutionStatus.RESOLVED
    assert form.address.city == "Mumbai"
    assert form.address.state == "Maharashtra"
    assert form.address.street == "14 FC Road"
    assert form.address.geolocation.lat == pytest.approx(19.07)
    assert form.last_resolution.state_inferred


async def test_state_change_re_resolves_quickly(form, upstream, fake_timer):
    form.set_city("Pune")
    fake_timer.advance(1.0)
    await form.geolocation_lookup.drain()

    form.set_state("Maharashtra")
    fake_timer.advance(0.5)
    await form.geolocation_lookup.drain()

    assert upstream.queries == ["Pune, India", "Pune, Maharashtra, India"]
    assert form.address.state == "Maharashtra"


async def test_state_change_without_city_does_nothing(form, upstream, fake_timer):
    form.set_state("Goa")
    fake_timer.advance(1.0)
    await form.geolocation_lookup.drain()
    assert upstream.queries == []


async def test_unknown_city_marks_failure(form, fake_timer):
    form.set_city("Atlantis")
    fake_timer.advance(1.0)
    await form.geolocation_lookup.drain()

    assert form.status == ResolutionStatus.FAILED
    assert form.error == "City not found"
    assert form.address.geolocation is None


async def test_device_location_supersedes_pending_typing(form, upstream, fake_timer):
    class StubResolver:
        async def resolve_from_device_location(self):
            return ResolvedLocation(success=True, lat=18.5, lng=73.8, city="Pune", state="Maharashtra", pincode="411005")

    form.set_city("Mumbai")
    form.resolver = StubResolver()
    result = await form.use_device_location()
    fake_timer.advance(2.0)
    await form.geolocation_lookup.drain()

    assert result.success
    assert upstream.queries == []
    assert form.address.city == "Pune"
    assert form.status == ResolutionStatus.RESOLVED


async def test_typing_during_device_fix_discards_device_result(form, fake_timer):
    release = asyncio.Event()

    class SlowDeviceResolver:
        async def resolve_from_device_location(self):
            await release.wait()
            return ResolvedLocation(success=True, lat=18.5, lng=73.8, city="Pune", state="Maharashtra", pincode="411005")

    form.resolver = SlowDeviceResolver()
    device = asyncio.create_task(form.use_device_location())
    await asyncio.sleep(0)

    form.set_city("Delhi")
    release.set()
    result = await device

    assert result.success
    assert form.last_resolution is None
    assert form.address.city == "Delhi"
    assert form.address.geolocation is None
    assert form.status == ResolutionStatus.DEBOUNCING
