import pytest

from squadsim.errors import MediatorError, NoHandlerError, RequestTimeoutError
from squadsim.events.bus import EVENT_MEDIATOR_REQUEST, EVENT_MEDIATOR_RESPONSE, EventBus
from squadsim.events.mediator import Mediator


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_request_returns_handler_result(mediator):
    mediator.register_handler("ECHO", lambda data: {"echo": data["value"]})

    assert mediator.request("ECHO", {"value": 3}) == {"echo": 3}


def test_request_without_handler_raises(mediator):
    with pytest.raises(NoHandlerError):
        mediator.request("MISSING")


def test_request_or_falls_back(mediator):
    assert mediator.request_or("MISSING", {}, default=0) == 0


def test_failing_handler_falls_through_to_next(mediator):
    def broken(data):
        raise RuntimeError("boom")

    mediator.register_handler("VALUE", broken)
    mediator.register_handler("VALUE", lambda data: 7)

    assert mediator.request("VALUE") == 7


def test_handlers_returning_none_reject_the_request(mediator):
    mediator.register_handler("VALUE", lambda data: None)

    with pytest.raises(NoHandlerError):
        mediator.request("VALUE")


def test_unregister_removes_handler(mediator):
    unregister = mediator.register_handler("VALUE", lambda data: 1)
    unregister()

    with pytest.raises(NoHandlerError):
        mediator.request("VALUE")


def test_response_after_deadline_times_out():
    bus = EventBus()
    clock = FakeClock()
    mediator = Mediator(bus, clock=clock)

    def slow(data):
        clock.now += 10.0
        return 1

    mediator.register_handler("SLOW", slow)

    with pytest.raises(RequestTimeoutError) as excinfo:
        mediator.request("SLOW", timeout=5.0)
    assert excinfo.value.code == "E005"
    assert isinstance(excinfo.value, MediatorError)


def test_cache_reuses_result_within_cache_time():
    bus = EventBus()
    clock = FakeClock()
    mediator = Mediator(bus, clock=clock)
    calls = []

    def handler(data):
        calls.append(data)
        return len(calls)

    mediator.register_handler("COUNT", handler)

    assert mediator.request("COUNT", {"k": 1}, use_cache=True) == 1
    assert mediator.request("COUNT", {"k": 1}, use_cache=True) == 1
    assert mediator.request("COUNT", {"k": 2}, use_cache=True) == 2
    clock.now += 2.0
    assert mediator.request("COUNT", {"k": 1}, use_cache=True) == 3
    mediator.invalidate_cache("COUNT")
    assert mediator.request("COUNT", {"k": 1}, use_cache=True) == 4


def test_request_chain_feeds_previous_result(mediator):
    mediator.register_handler("DOUBLE", lambda data: data["value"] * 2)

    results = mediator.request_chain(
        [
            ("DOUBLE", {"value": 2}),
            ("DOUBLE", lambda previous: {"value": previous}),
        ]
    )

    assert results == [4, 8]


def test_traffic_goes_over_the_bus(bus, mediator, record):
    requests = record(EVENT_MEDIATOR_REQUEST)
    responses = record(EVENT_MEDIATOR_RESPONSE)
    mediator.register_handler("VALUE", lambda data: 5)

    mediator.request("VALUE")
    mediator.request("VALUE")

    assert [r["request_type"] for r in requests] == ["VALUE", "VALUE"]
    assert requests[1]["request_id"] > requests[0]["request_id"]
    assert [r["result"] for r in responses] == [5, 5]


def test_destroyed_mediator_rejects_requests(mediator):
    mediator.register_handler("VALUE", lambda data: 5)
    mediator.destroy()

    with pytest.raises(MediatorError):
        mediator.request("VALUE")
