"""Tests for the debounced, cached detail fetch controller."""

import asyncio

import pytest

from casedesk.core.detail_controller import DetailFetchController
from casedesk.core.events import DebounceElapsed, EventBus, EventKind, StatusLevel

DEBOUNCE = 0.05


def _controller(service, debounce=DEBOUNCE, timeout=2.0):
    bus = EventBus()
    controller = DetailFetchController(service, bus, debounce=debounce, timeout=timeout)
    statuses = []
    handlers = {
        EventKind.DEBOUNCE_ELAPSED: controller.on_debounce_elapsed,
        EventKind.DETAIL_LOADED: controller.on_detail_loaded,
        EventKind.STATUS_POSTED: statuses.append,
    }
    return controller, bus, handlers, statuses


# ---------------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------------

class TestDebounce:
    @pytest.mark.asyncio
    async def test_rapid_selection_fetches_only_last(self, service, pump):
        controller, bus, handlers, _ = _controller(service, debounce=0.2)
        a, b, c = service.order[:3]

        controller.on_selection_changed(a)
        await asyncio.sleep(0.02)
        controller.on_selection_changed(b)
        await asyncio.sleep(0.02)
        controller.on_selection_changed(c)

        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        await pump(bus, handlers, seconds=0.3)

        assert service.calls_for("get_case") == [c]
        assert controller.displayed.case_number == c

    @pytest.mark.asyncio
    async def test_no_fetch_before_delay(self, service, pump):
        controller, bus, handlers, _ = _controller(service, debounce=0.3)

        controller.on_selection_changed(service.order[0])
        await pump(bus, handlers, seconds=0.1)

        assert service.calls_for("get_case") == []
        assert controller.pending == service.order[0]

    @pytest.mark.asyncio
    async def test_stale_timer_is_ignored(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        a, b = service.order[:2]

        controller.on_selection_changed(a)
        controller.on_selection_changed(b)
        controller.on_debounce_elapsed(DebounceElapsed(a))
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        assert service.calls_for("get_case") == [b]

    @pytest.mark.asyncio
    async def test_timer_from_earlier_visit_is_ignored(self, service, pump):
        controller, bus, handlers, _ = _controller(service, debounce=0.1)
        a, b = service.order[:2]

        controller.on_selection_changed(a)
        await asyncio.sleep(0.15)
        assert len(bus) == 1
        controller.on_selection_changed(b)
        controller.on_selection_changed(a)
        await pump(bus, handlers, seconds=0.03)

        assert service.calls_for("get_case") == []
        assert controller.pending == a

        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        assert service.calls_for("get_case") == [a]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TestCache:
    @pytest.mark.asyncio
    async def test_cached_selection_is_synchronous(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        a, b = service.order[:2]

        controller.on_selection_changed(a)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        controller.on_selection_changed(b)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        controller.on_selection_changed(a)

        assert controller.displayed.case_number == a
        assert controller.pending is None
        assert service.calls_for("get_case") == [a, b]

    @pytest.mark.asyncio
    async def test_reselecting_cached_case_issues_no_fetch(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        a = service.order[0]

        controller.on_selection_changed(a)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        for _ in range(5):
            controller.on_selection_changed(a)
        await pump(bus, handlers, seconds=0.15)

        assert service.calls_for("get_case") == [a]

    @pytest.mark.asyncio
    async def test_cache_is_read_only(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        controller.on_selection_changed(service.order[0])
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        with pytest.raises(TypeError):
            controller.cache["x"] = controller.displayed  # type: ignore[index]
        assert list(controller.cache) == [service.order[0]]

    @pytest.mark.asyncio
    async def test_clear_forgets_everything(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        controller.on_selection_changed(service.order[0])
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        controller.clear()

        assert dict(controller.cache) == {}
        assert controller.displayed is None
        assert controller.selected is None


# ---------------------------------------------------------------------------
# Stale results and failures
# ---------------------------------------------------------------------------

class TestStaleResults:
    @pytest.mark.asyncio
    async def test_late_result_is_cached_but_not_displayed(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        x, y = service.order[:2]
        service.gates[x] = asyncio.Event()

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: x in controller.in_flight)

        controller.on_selection_changed(y)
        await pump(bus, handlers, until=lambda: y in controller.cache)
        assert controller.displayed.case_number == y

        service.gates[x].set()
        await pump(bus, handlers, until=lambda: x in controller.cache)

        assert controller.displayed.case_number == y
        assert controller.cache[x].case_number == x

    @pytest.mark.asyncio
    async def test_in_flight_fetch_is_not_duplicated(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        x, y = service.order[:2]
        service.gates[x] = asyncio.Event()

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: x in controller.in_flight)
        controller.on_selection_changed(y)
        controller.on_selection_changed(x)
        await pump(bus, handlers, seconds=0.15)

        assert service.calls_for("get_case") == [x]

        service.gates[x].set()
        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        assert controller.displayed.case_number == x

    @pytest.mark.asyncio
    async def test_failure_posts_status_and_is_not_cached(self, service, pump):
        controller, bus, handlers, statuses = _controller(service)
        x = service.order[0]
        service.fail["get_case"].add(x)

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: bool(statuses))

        assert statuses[0].level == StatusLevel.ERROR
        assert x in statuses[0].message
        assert x not in controller.cache
        assert controller.displayed is None

        service.fail["get_case"].clear()
        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        assert service.calls_for("get_case") == [x, x]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_and_retried(self, service, pump, monkeypatch):
        controller, bus, handlers, statuses = _controller(service)
        x, y = service.order[:2]
        get_case = service.get_case

        async def broken(case_number):
            raise ValueError("unexpected payload")

        monkeypatch.setattr(service, "get_case", broken)
        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: bool(statuses))

        assert statuses[0].level == StatusLevel.ERROR
        assert "unexpected payload" in statuses[0].message
        assert controller.in_flight == frozenset()

        monkeypatch.setattr(service, "get_case", get_case)
        controller.on_selection_changed(y)
        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)

        assert controller.displayed.case_number == x
        assert service.calls_for("get_case") == [x]

    @pytest.mark.asyncio
    async def test_partial_bundle_is_displayed_with_warning(self, service, pump):
        controller, bus, handlers, statuses = _controller(service)
        x = service.order[0]
        service.fail["get_comments"].add(x)

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: controller.displayed is not None)
        await pump(bus, handlers, until=lambda: bool(statuses))

        assert controller.displayed.is_partial
        assert controller.displayed.comments_error
        assert statuses[0].level == StatusLevel.WARNING
        assert "comments" in statuses[0].message

    @pytest.mark.asyncio
    async def test_timeout_is_reported_as_failure(self, service, pump):
        controller, bus, handlers, statuses = _controller(service, timeout=0.05)
        x = service.order[0]
        service.gates[x] = asyncio.Event()

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: bool(statuses))

        assert "timed out" in statuses[0].message
        assert x not in controller.cache

    @pytest.mark.asyncio
    async def test_result_after_clear_is_dropped(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        x = service.order[0]

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: x in controller.in_flight)
        controller.clear()
        await pump(bus, handlers, seconds=0.1)

        assert dict(controller.cache) == {}

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_fetch(self, service, pump):
        controller, bus, handlers, _ = _controller(service)
        x = service.order[0]
        service.gates[x] = asyncio.Event()

        controller.on_selection_changed(x)
        await pump(bus, handlers, until=lambda: x in controller.in_flight)
        await controller.close()

        assert controller.in_flight == frozenset()
