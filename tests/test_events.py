"""Tests for the event-to-polling adaptor."""

import asyncio
import threading

from refbridge.registry import ReferenceTable
from tests.fixtures.bridge_targets import StubbornTicker
from tests.fixtures.bridge_targets import Ticker
from tests.fixtures.harness import BridgeHarness


async def _drain() -> None:
    """Let scheduled deliveries run."""
    for _ in range(3):
        await asyncio.sleep(0)


async def _new_ticker(harness: BridgeHarness) -> tuple[int, Ticker]:
    module_handle: int = await harness.load_targets()
    reply: dict[str, object] = await harness.request("init", module_handle, "Ticker", [])
    handle: object = reply["val"]
    assert isinstance(handle, int)
    ticker: object = harness.session.table.resolve(handle)
    assert isinstance(ticker, Ticker)
    return handle, ticker


def test_each_emission_yields_one_notification() -> None:
    """Verify ``n`` firings produce ``n`` notifications with distinct handles."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)

        started: dict[str, object] = await harness.request(
            "call",
            0,
            "startEventPolling",
            [ticker_handle, "tick", "poll-1"],
        )
        assert started["key"] == "num"
        assert started["val"] is True

        for index in range(4):
            ticker.emit("tick", index, f"payload-{index}")
        await _drain()

        notifications: list[dict[str, object]] = harness.notifications("poll-1")
        assert len(notifications) == 4
        handles: list[object] = [message["val"] for message in notifications]
        assert len(set(handles)) == 4
        for index, handle in enumerate(handles):
            bundle: object = harness.session.table.resolve(handle)  # type: ignore[arg-type]
            assert bundle == [index, f"payload-{index}"]
            assert isinstance(notifications[index]["r"], int)

    asyncio.run(scenario())


def test_bundle_members_are_readable_through_get() -> None:
    """Verify emitted arguments can be read back by index."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", 5])
        ticker.emit("tick", "first", 2)
        await _drain()

        bundle_handle: object = harness.notifications(5)[0]["val"]
        first: dict[str, object] = await harness.request("get", bundle_handle, 0)  # type: ignore[arg-type]
        assert first["key"] == "string"
        assert first["val"] == "first"

    asyncio.run(scenario())


def test_emission_inside_a_call_is_delivered_after_the_reply() -> None:
    """Verify handlers fired during dispatch only schedule delivery."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, _ = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "p"])

        emitted: dict[str, object] = await harness.request("call", ticker_handle, "emit", ["tick", 1])
        assert emitted["val"] == 1
        assert harness.notifications("p") == []

        await _drain()
        assert len(harness.notifications("p")) == 1
        assert harness.sent.index(emitted) < harness.sent.index(harness.notifications("p")[0])

    asyncio.run(scenario())


def test_stop_ends_notifications() -> None:
    """Verify no notifications follow ``stopEventPolling``."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "p"])
        ticker.emit("tick")
        await _drain()
        assert len(harness.notifications("p")) == 1

        stopped: dict[str, object] = await harness.request("call", 0, "stopEventPolling", ["p"])
        assert stopped["key"] == "void"
        assert ticker.listener_count("tick") == 0
        assert "p" not in harness.session.events

        ticker.emit("tick")
        ticker.emit("tick")
        await _drain()
        assert len(harness.notifications("p")) == 1

    asyncio.run(scenario())


def test_stop_drops_deliveries_already_scheduled() -> None:
    """Verify emissions scheduled before ``stop`` are not delivered after it."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "p"])
        table_size: int = len(harness.session.table)
        ticker.emit("tick")
        harness.session.events.stop("p")
        await _drain()
        assert harness.notifications("p") == []
        assert len(harness.session.table) == table_size

    asyncio.run(scenario())


def test_stop_unknown_polling_id_is_noop() -> None:
    """Verify stopping an unknown polling id replies normally."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        reply: dict[str, object] = await harness.request("call", 0, "stopEventPolling", ["never-started"])
        assert "error" not in reply
        assert reply["key"] == "void"

    asyncio.run(scenario())


def test_restart_with_same_polling_id_replaces_subscription() -> None:
    """Verify one polling id never has two active subscriptions."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "p"])
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tock", "p"])
        assert ticker.listener_count("tick") == 0
        assert ticker.listener_count("tock") == 1
        assert len(harness.session.events) == 1

        ticker.emit("tick")
        ticker.emit("tock")
        await _drain()
        assert len(harness.notifications("p")) == 1

    asyncio.run(scenario())


def test_free_tears_down_subscription() -> None:
    """Verify freeing the target handle deregisters its handlers."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "a"])
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tock", "b"])
        assert harness.session.table.polling_ids_for(ticker_handle) == frozenset({"a", "b"})

        freed: dict[str, object] = await harness.request("free", ticker_handle)
        assert freed["val"] is True
        assert ticker.listener_count("tick") == 0
        assert ticker.listener_count("tock") == 0
        assert len(harness.session.events) == 0

        ticker.emit("tick")
        await _drain()
        assert harness.notifications("a") == []

    asyncio.run(scenario())


def test_add_listener_style_emitters_are_supported() -> None:
    """Verify emitters exposing ``add_listener``/``remove_listener`` work."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        module_handle: int = await harness.load_targets()
        reply: dict[str, object] = await harness.request("init", module_handle, "ListenerEmitter", [])
        emitter_handle: object = reply["val"]
        await harness.request("call", 0, "startEventPolling", [emitter_handle, "data", 1])
        await harness.request("call", emitter_handle, "emit", ["data", "x"])  # type: ignore[arg-type]
        await _drain()
        assert len(harness.notifications(1)) == 1
        stopped: dict[str, object] = await harness.request("call", 0, "stopEventPolling", [1])
        assert "error" not in stopped

    asyncio.run(scenario())


def test_start_errors_are_reported() -> None:
    """Verify bad subscription targets produce error replies."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        module_handle: int = await harness.load_targets()
        record: dict[str, object] = await harness.request("call", module_handle, "make_record", [])

        not_emitter: dict[str, object] = await harness.request(
            "call",
            0,
            "startEventPolling",
            [record["val"], "tick", "p"],
        )
        assert not_emitter["error"] == "NotCallable"

        unknown: dict[str, object] = await harness.request("call", 0, "startEventPolling", [4242, "tick", "p"])
        assert unknown["error"] == "ReferenceNotFound"

        bad_handle: dict[str, object] = await harness.request("call", 0, "startEventPolling", ["x", "tick", "p"])
        assert bad_handle["error"] == "ProtocolError"

        bad_polling_id: dict[str, object] = await harness.request(
            "call",
            0,
            "startEventPolling",
            [record["val"], "tick", ["unhashable"]],
        )
        assert bad_polling_id["error"] == "ProtocolError"
        assert len(harness.session.events) == 0

    asyncio.run(scenario())


def test_emission_from_another_thread_is_delivered_on_the_loop() -> None:
    """Verify handlers may fire from foreign threads."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        harness.session.events.start(ticker_handle, "tick", "threaded")

        worker: threading.Thread = threading.Thread(target=ticker.emit, args=("tick", "from-thread"))
        worker.start()
        worker.join()
        for _ in range(20):
            if len(harness.notifications("threaded")) > 0:
                break
            await asyncio.sleep(0.01)

        notifications: list[dict[str, object]] = harness.notifications("threaded")
        assert len(notifications) == 1
        assert harness.session.table.resolve(notifications[0]["val"]) == ["from-thread"]  # type: ignore[arg-type]

    asyncio.run(scenario())


def test_close_stops_everything() -> None:
    """Verify session close deregisters handlers and clears handles."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        ticker_handle, ticker = await _new_ticker(harness)
        harness.session.events.start(ticker_handle, "tick", "p")
        harness.session.close()
        assert ticker.listener_count("tick") == 0
        table: ReferenceTable = harness.session.table
        assert len(table) == 1

    asyncio.run(scenario())


def test_free_with_failing_deregistration_keeps_state_consistent() -> None:
    """Verify a raising ``off`` leaves handle, record and handler together."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        module_handle: int = await harness.load_targets()
        reply: dict[str, object] = await harness.request("init", module_handle, "StubbornTicker", [])
        ticker_handle: object = reply["val"]
        assert isinstance(ticker_handle, int)
        ticker: object = harness.session.table.resolve(ticker_handle)
        assert isinstance(ticker, StubbornTicker)
        await harness.request("call", 0, "startEventPolling", [ticker_handle, "tick", "p"])

        failed: dict[str, object] = await harness.request("free", ticker_handle)
        assert failed["error"] == "InvocationError"
        assert failed["message"] == "off failed"
        assert ticker_handle in harness.session.table
        assert "p" in harness.session.events
        assert harness.session.table.polling_ids_for(ticker_handle) == frozenset({"p"})
        assert ticker.listener_count("tick") == 1

        ticker.emit("tick", "still-live")
        await _drain()
        assert len(harness.notifications("p")) == 1

        ticker.stubborn = False
        freed: dict[str, object] = await harness.request("free", ticker_handle)
        assert freed["val"] is True
        assert ticker_handle not in harness.session.table
        assert len(harness.session.events) == 0
        assert ticker.listener_count("tick") == 0

    asyncio.run(scenario())


def test_close_discards_subscriptions_that_fail_to_stop() -> None:
    """Verify session close survives a raising ``off``."""

    async def scenario() -> None:
        harness: BridgeHarness = BridgeHarness()
        module_handle: int = await harness.load_targets()
        reply: dict[str, object] = await harness.request("init", module_handle, "StubbornTicker", [])
        ticker_handle: object = reply["val"]
        assert isinstance(ticker_handle, int)
        harness.session.events.start(ticker_handle, "tick", "p")

        harness.session.close()
        assert len(harness.session.events) == 0
        assert len(harness.session.table) == 1

    asyncio.run(scenario())
