import asyncio
import logging
import unittest

import pytest

from conftest import MemoryStore, make_step
from humanness.coalescer import StepCoalescer, summarize_steps, validate_step
from humanness.errors import SessionNotFound, TransportFailure, ValidationFailure
from humanness.schemas import SessionMeta


async def _submit_one_at_a_time(coalescer, session_id, steps):
    tasks = []
    for step in steps:
        tasks.append(asyncio.create_task(coalescer.submit(session_id, step)))
        # let the submit run up to its await before the next one arrives
        await asyncio.sleep(0)
    return await asyncio.gather(*tasks, return_exceptions=True)


class StepCoalescerTests(unittest.IsolatedAsyncioTestCase):
    async def test_fifteen_steps_flush_in_five_rounds_of_three(self):
        store = MemoryStore()
        store.add("s1", steps_total=15)
        coalescer = StepCoalescer(store, batch_size=3, flush_delay=60)

        outcomes = await _submit_one_at_a_time(coalescer, "s1", [make_step(n) for n in range(1, 16)])

        self.assertTrue(all(o["success"] for o in outcomes))
        self.assertEqual(coalescer.rounds, 5)
        self.assertEqual([u["new_steps"] for u in store.updates], [3, 3, 3, 3, 3])
        record = store.records["s1"]
        self.assertEqual(len(record.steps), 15)
        self.assertEqual([s.step_number for s in record.steps], list(range(1, 16)))
        self.assertEqual(record.steps_completed, 15)
        self.assertIsNotNone(record.meta.end_time)
        self.assertEqual(coalescer.pending_count, 0)

    async def test_timer_flushes_a_partial_batch(self):
        store = MemoryStore()
        store.add("s1")
        coalescer = StepCoalescer(store, batch_size=3, flush_delay=0.01)

        outcome = await asyncio.wait_for(coalescer.submit("s1", make_step(1)), timeout=2)

        self.assertEqual(outcome, {"success": True, "sessionId": "s1", "stepsCompleted": 1})
        self.assertEqual(coalescer.rounds, 1)

    async def test_timer_is_not_rearmed_by_later_events(self):
        store = MemoryStore()
        store.add("s1")
        coalescer = StepCoalescer(store, batch_size=10, flush_delay=0.2)
        loop = asyncio.get_running_loop()

        first = asyncio.create_task(coalescer.submit("s1", make_step(1)))
        await asyncio.sleep(0)
        timer = coalescer._timer
        await asyncio.sleep(0.1)
        second = asyncio.create_task(coalescer.submit("s1", make_step(2)))
        await asyncio.sleep(0)
        self.assertIs(coalescer._timer, timer)

        started = loop.time()
        await asyncio.gather(first, second)
        self.assertLess(loop.time() - started, 0.18)
        self.assertEqual(coalescer.rounds, 1)
        self.assertEqual(len(store.records["s1"].steps), 2)

    async def test_failing_session_does_not_affect_other_sessions(self):
        store = MemoryStore(failing={"bad"})
        store.add("good")
        store.add("bad")
        coalescer = StepCoalescer(store, batch_size=4, flush_delay=60)

        tasks = [
            asyncio.create_task(coalescer.submit("good", make_step(1))),
            asyncio.create_task(coalescer.submit("bad", make_step(1))),
            asyncio.create_task(coalescer.submit("good", make_step(2))),
            asyncio.create_task(coalescer.submit("bad", make_step(2))),
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        self.assertEqual(outcomes[0]["stepsCompleted"], 2)
        self.assertEqual(outcomes[2]["stepsCompleted"], 2)
        self.assertIsInstance(outcomes[1], TransportFailure)
        self.assertIs(outcomes[1], outcomes[3])
        self.assertEqual(len(store.records["good"].steps), 2)
        self.assertEqual(store.records["bad"].steps, [])

    async def test_unknown_session_rejects_its_callers(self):
        store = MemoryStore()
        coalescer = StepCoalescer(store, batch_size=1)

        with self.assertRaises(SessionNotFound):
            await coalescer.submit("missing", make_step(1))

    async def test_every_submit_settles_exactly_once_across_sessions(self):
        store = MemoryStore(failing={"s3"}, delay=0.001)
        for sid in ("s1", "s2", "s3", "s4"):
            store.add(sid)
        coalescer = StepCoalescer(store, batch_size=3, flush_delay=0.01)

        tasks = []
        for n in range(1, 8):
            for sid in ("s1", "s2", "s3", "s4"):
                tasks.append((sid, asyncio.create_task(coalescer.submit(sid, make_step(n)))))
        outcomes = await asyncio.gather(*(t for _, t in tasks), return_exceptions=True)
        await coalescer.drain()

        for (sid, _), outcome in zip(tasks, outcomes):
            if sid == "s3":
                self.assertIsInstance(outcome, TransportFailure)
            else:
                self.assertTrue(outcome["success"])
        for sid in ("s1", "s2", "s4"):
            steps = store.records[sid].steps
            self.assertEqual(sorted(s.step_number for s in steps), list(range(1, 8)))
        self.assertEqual(sum(u["new_steps"] for u in store.updates), 21)

    async def test_rounds_append_without_overwriting(self):
        store = MemoryStore()
        store.add("s1", steps=[make_step(1, session_id="s1")])
        coalescer = StepCoalescer(store, batch_size=2, flush_delay=60)

        await _submit_one_at_a_time(coalescer, "s1", [make_step(2), make_step(3)])
        await _submit_one_at_a_time(coalescer, "s1", [make_step(4), make_step(5)])

        self.assertEqual([s.step_number for s in store.records["s1"].steps], [1, 2, 3, 4, 5])

    async def test_drain_flushes_trailing_batch(self):
        store = MemoryStore()
        store.add("s1")
        coalescer = StepCoalescer(store, batch_size=5, flush_delay=60)

        pending = asyncio.create_task(coalescer.submit("s1", make_step(1)))
        await asyncio.sleep(0)
        self.assertEqual(coalescer.pending_count, 1)

        self.assertEqual(await coalescer.drain(), 1)
        self.assertTrue((await pending)["success"])
        self.assertIsNone(coalescer._timer)
        self.assertEqual(await coalescer.flush(), 0)

    async def test_invalid_step_never_enters_the_batch(self):
        coalescer = StepCoalescer(MemoryStore())

        with self.assertRaises(ValidationFailure):
            await coalescer.submit("", make_step(1))
        with self.assertRaises(ValidationFailure):
            await coalescer.submit("s1", {"stepNumber": 0, "questionType": "open-ended", "userResponse": "x", "responseTimeMs": 10})
        with self.assertRaises(ValidationFailure):
            await coalescer.submit("s1", {"stepNumber": 1, "questionType": "open-ended", "userResponse": "x"})
        for blank in ("", "   "):
            with self.assertRaises(ValidationFailure):
                await coalescer.submit("s1", {"stepNumber": 1, "questionType": "open-ended", "userResponse": blank, "responseTimeMs": 500})
        self.assertEqual(coalescer.pending_count, 0)

    async def test_suspicious_response_time_is_logged_not_rejected(self):
        store = MemoryStore()
        store.add("s1")
        coalescer = StepCoalescer(store, batch_size=1)

        with self.assertLogs("humanness.coalescer", level=logging.WARNING) as logs:
            outcome = await coalescer.submit("s1", make_step(1, response_time_ms=40))
        self.assertTrue(outcome["success"])
        self.assertIn("Suspicious response time", logs.output[0])


def test_validate_step_accepts_camel_case_payload():
    step = validate_step(
        " s9 ",
        {"stepNumber": 2, "questionType": "word-association", "userResponse": "moss", "responseTimeMs": 900},
    )
    assert step.session_id == "s9"
    assert step.step_number == 2
    assert step.user_response == "moss"


def test_validate_step_rejects_other_session():
    with pytest.raises(ValidationFailure):
        validate_step("s1", make_step(1, session_id="s2"))


def test_summarize_steps_keeps_start_time_and_rounds_average():
    meta = SessionMeta(start_time="2025-01-01T00:00:00Z")
    steps = [make_step(1, response_time_ms=1000), make_step(2, response_time_ms=2001)]

    summary = summarize_steps(steps, meta, steps_total=16)

    assert summary.total_response_time == 3001
    assert summary.average_response_time == 1500
    assert summary.start_time == meta.start_time
    assert summary.end_time is None


def test_summarize_steps_empty():
    summary = summarize_steps([], None)
    assert summary.total_response_time == 0
    assert summary.average_response_time == 0
    assert summary.start_time is not None
