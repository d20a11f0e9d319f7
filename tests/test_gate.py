"""Tests for spellwright.llm.base — gate, deadline race and callback adapter."""

import asyncio

import pytest

from spellwright.llm.base import (
    CallCancelled,
    CallTimedOut,
    SingleFlightGate,
    deliver_stream,
    wait_interruptibly,
)


async def _value(v, delay: float = 0.0):
    await asyncio.sleep(delay)
    return v


async def _tokens(*items):
    for item in items:
        yield item


# ---------------------------------------------------------------------------
# wait_interruptibly
# ---------------------------------------------------------------------------

class TestWaitInterruptibly:
    async def test_returns_result(self) -> None:
        assert await wait_interruptibly(_value(42)) == 42

    async def test_deadline(self) -> None:
        loop = asyncio.get_running_loop()
        with pytest.raises(CallTimedOut):
            await wait_interruptibly(_value(1, delay=1), deadline=loop.time() + 0.02)

    async def test_deadline_already_passed(self) -> None:
        loop = asyncio.get_running_loop()
        with pytest.raises(CallTimedOut):
            await wait_interruptibly(_value(1), deadline=loop.time() - 1)

    async def test_cancel_already_set(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(CallCancelled):
            await wait_interruptibly(_value(1), cancel=cancel)

    async def test_cancel_fires_midway(self) -> None:
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, cancel.set)
        with pytest.raises(CallCancelled):
            await wait_interruptibly(_value(1, delay=1), cancel=cancel)

    async def test_errors_propagate(self) -> None:
        async def boom():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await wait_interruptibly(boom())


# ---------------------------------------------------------------------------
# SingleFlightGate
# ---------------------------------------------------------------------------

class TestSingleFlightGate:
    async def test_states_on_success(self) -> None:
        gate = SingleFlightGate()
        async with gate.hold("chat") as record:
            assert record.state == "generating"
            assert gate.busy
        assert record.state == "completed"
        assert record.finished_at >= record.started_at
        assert not gate.busy

    async def test_failure_releases_gate(self) -> None:
        gate = SingleFlightGate()
        with pytest.raises(RuntimeError):
            async with gate.hold("chat"):
                raise RuntimeError("model crashed")
        assert gate.records[-1].state == "failed"
        assert not gate.busy

    async def test_timeout_state(self) -> None:
        gate = SingleFlightGate()
        with pytest.raises(CallTimedOut):
            async with gate.hold("chat"):
                raise CallTimedOut("slow")
        assert gate.records[-1].state == "timed_out"

    async def test_fifo_and_no_overlap(self) -> None:
        gate = SingleFlightGate()
        order: list[int] = []
        active = 0

        async def call(i: int) -> None:
            nonlocal active
            async with gate.hold(f"call-{i}"):
                active += 1
                assert active == 1
                order.append(i)
                await asyncio.sleep(0.005)
                active -= 1

        await asyncio.gather(*(call(i) for i in range(5)))
        assert order == [0, 1, 2, 3, 4]

    async def test_cancelled_while_waiting(self) -> None:
        gate = SingleFlightGate()
        cancel = asyncio.Event()
        async with gate.hold("first"):
            waiter = asyncio.create_task(self._enter(gate, cancel))
            await asyncio.sleep(0.01)
            cancel.set()
            with pytest.raises(CallCancelled):
                await waiter
        assert gate.records[-1].state == "cancelled"
        assert not gate.busy

    @staticmethod
    async def _enter(gate: SingleFlightGate, cancel: asyncio.Event) -> None:
        async with gate.hold("second", cancel):
            pass

    async def test_deferred_work_delays_next_holder(self) -> None:
        gate = SingleFlightGate()
        straggler = asyncio.ensure_future(asyncio.sleep(0.05))
        async with gate.hold("first"):
            gate.defer(straggler)
        assert not gate.busy
        assert gate.draining

        async with gate.hold("second"):
            assert straggler.done()
            assert not straggler.cancelled()
        assert not gate.draining

    async def test_defer_ignores_finished_work(self) -> None:
        gate = SingleFlightGate()
        done = asyncio.ensure_future(_value(1))
        await done
        gate.defer(done)
        assert not gate.draining

    async def test_cancelled_while_draining(self) -> None:
        gate = SingleFlightGate()
        straggler = asyncio.ensure_future(asyncio.sleep(1.0))
        gate.defer(straggler)
        cancel = asyncio.Event()
        waiter = asyncio.create_task(self._enter(gate, cancel))
        await asyncio.sleep(0.01)
        cancel.set()
        with pytest.raises(CallCancelled):
            await waiter
        assert not gate.busy
        assert not straggler.cancelled()
        straggler.cancel()

    async def test_history_bounded(self) -> None:
        gate = SingleFlightGate(history=3)
        for i in range(5):
            async with gate.hold(str(i)):
                pass
        assert [r.label for r in gate.records] == ["2", "3", "4"]


# ---------------------------------------------------------------------------
# deliver_stream
# ---------------------------------------------------------------------------

class TestDeliverStream:
    async def test_tokens_then_done(self) -> None:
        events: list[str] = []
        await deliver_stream(_tokens("a", "b"), events.append, lambda: events.append("<done>"))
        assert events == ["a", "b", "<done>"]

    async def test_empty_stream_still_done(self) -> None:
        done: list[bool] = []
        await deliver_stream(_tokens(), lambda t: None, lambda: done.append(True))
        assert done == [True]

    async def test_callback_error_stops_stream(self) -> None:
        seen: list[str] = []
        done: list[bool] = []

        def on_token(token: str) -> None:
            seen.append(token)
            raise ValueError("ui gone")

        await deliver_stream(_tokens("a", "b", "c"), on_token, lambda: done.append(True))
        assert seen == ["a"]
        assert done == [True]
