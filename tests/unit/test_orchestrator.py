"""Unit tests for the tool orchestrator."""

import asyncio

import pytest

from tributary.events import ArtifactEvent, ToolResultEvent
from tributary.exceptions import ToolError
from tributary.instrumentation import StreamObserver
from tributary.orchestrator import ToolOrchestrator
from tributary.tools import Artifact, Tool, ToolCall, ToolOutput, tool


def _call(tool_name, call_id=None, **arguments):
    return ToolCall(id=call_id or f"call_{tool_name}", name=tool_name, arguments=arguments)


async def _collect(orchestrator, batch, message_id="m1"):
    return [e async for e in orchestrator.stream(batch, message_id)]


# ---------------------------------------------------------------------------
# prepare()
# ---------------------------------------------------------------------------


class TestPrepare:
    def test_groups_by_concurrency_keyed_by_index(self, sample_tool):
        fast = Tool(name="fast", concurrent=True, handler=lambda: "ok")
        batch = ToolOrchestrator().prepare(
            [sample_tool, fast],
            [_call("fast"), _call("greet", name="a"), _call("fast", "c3")],
        )
        assert sorted(batch.concurrent) == [0, 2]
        assert sorted(batch.sequential) == [1]
        assert not batch.has_deferred

    def test_unknown_and_ambiguous_names_fail(self, sample_tool):
        twin = Tool(name="greet", handler=lambda name: name)
        batch = ToolOrchestrator().prepare(
            [sample_tool, twin], [_call("missing"), _call("greet", name="x")],
        )
        assert "not found" in str(batch.failures[0])
        assert "Multiple tools found" in str(batch.failures[1])

    def test_client_tools_are_deferred(self):
        batch = ToolOrchestrator().prepare(
            [Tool.client("confirm")], [_call("confirm")],
        )
        assert batch.has_deferred
        assert batch.deferred == [0]


# ---------------------------------------------------------------------------
# stream() / execute()
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_empty_call_list(self):
        results, has_deferred = await ToolOrchestrator().execute([], [])
        assert results == []
        assert not has_deferred

    @pytest.mark.asyncio
    async def test_results_follow_call_order_not_completion_order(self):
        @tool(concurrent=True)
        async def slow(tag: str):
            await asyncio.sleep(0.05)
            return f"slow {tag}"

        @tool(concurrent=True)
        async def quick(tag: str):
            return f"quick {tag}"

        calls = [_call("slow", "c1", tag="a"), _call("quick", "c2", tag="b")]
        results, _ = await ToolOrchestrator().execute([slow, quick], calls)

        assert [r.tool_call_id for r in results] == ["c1", "c2"]
        assert [r.result for r in results] == ["slow a", "quick b"]

    @pytest.mark.asyncio
    async def test_missing_tool_between_concurrent_tools(self):
        @tool(concurrent=True)
        async def first():
            return "one"

        @tool(concurrent=True)
        async def third():
            return "three"

        calls = [_call("first"), _call("error_tool"), _call("third")]
        results, _ = await ToolOrchestrator().execute([first, third], calls)

        assert len(results) == 3
        assert [r.is_error for r in results] == [False, True, False]
        assert "not found" in results[1].result
        assert results[0].result == "one"
        assert results[2].result == "three"

    @pytest.mark.asyncio
    async def test_concurrent_tools_overlap(self):
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return "done"

        tools = [Tool(name=f"t{i}", concurrent=True, handler=work) for i in range(3)]
        await ToolOrchestrator().execute(tools, [_call(f"t{i}") for i in range(3)])

        assert peak == 3

    @pytest.mark.asyncio
    async def test_sequential_tools_run_one_at_a_time_in_order(self):
        log = []

        @tool
        async def step(n: int):
            log.append(f"start {n}")
            await asyncio.sleep(0)
            log.append(f"end {n}")
            return str(n)

        await ToolOrchestrator().execute([step], [_call("step", "a", n=1), _call("step", "b", n=2)])

        assert log == ["start 1", "end 1", "start 2", "end 2"]

    @pytest.mark.asyncio
    async def test_domain_error_becomes_failed_result(self):
        @tool
        def fails():
            raise ToolError("backend unavailable")

        results, _ = await ToolOrchestrator().execute([fails], [_call("fails")])

        assert results[0].is_error
        assert results[0].result == "backend unavailable"

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_failed_result(self, sample_tool):
        results, _ = await ToolOrchestrator().execute([sample_tool], [_call("greet")])
        assert results[0].is_error
        assert "Invalid arguments" in results[0].result

    @pytest.mark.asyncio
    async def test_non_domain_error_propagates(self):
        @tool
        def broken():
            raise ValueError("bug")

        with pytest.raises(ValueError, match="bug"):
            await ToolOrchestrator().execute([broken], [_call("broken")])

    @pytest.mark.asyncio
    async def test_non_domain_error_waits_for_concurrent_siblings(self):
        finished = []

        @tool(concurrent=True)
        async def broken():
            raise RuntimeError("boom")

        @tool(concurrent=True)
        async def sibling():
            await asyncio.sleep(0.02)
            finished.append("sibling")
            return "ok"

        with pytest.raises(RuntimeError, match="boom"):
            await ToolOrchestrator().execute(
                [broken, sibling], [_call("broken"), _call("sibling")],
            )
        assert finished == ["sibling"]

    @pytest.mark.asyncio
    async def test_deferred_calls_produce_no_result(self, sample_tool):
        calls = [_call("greet", name="a"), _call("confirm")]
        results, has_deferred = await ToolOrchestrator().execute(
            [sample_tool, Tool.client("confirm")], calls,
        )
        assert has_deferred
        assert [r.tool_call_id for r in results] == ["call_greet"]

    @pytest.mark.asyncio
    async def test_result_ids_and_args_carried(self, sample_tool):
        call = ToolCall(id="fc_1", name="greet", arguments={"name": "a"}, result_id="call_9")
        results, _ = await ToolOrchestrator().execute([sample_tool], [call])
        assert results[0].tool_call_result_id == "call_9"
        assert results[0].args == {"name": "a"}

    @pytest.mark.asyncio
    async def test_structured_result_kept_as_is(self):
        @tool
        def data():
            return {"rows": [1, 2]}

        results, _ = await ToolOrchestrator().execute([data], [_call("data")])
        assert results[0].result == {"rows": [1, 2]}


class TestStreamEvents:
    @pytest.mark.asyncio
    async def test_artifacts_follow_their_result(self):
        a = Artifact.from_raw_content(b"a", "image/png")
        b = Artifact.from_raw_content(b"b", "image/png")

        @tool
        def render():
            return ToolOutput("ok", [a, b])

        orchestrator = ToolOrchestrator()
        batch = orchestrator.prepare([render], [_call("render")])
        events = await _collect(orchestrator, batch)

        assert [type(e) for e in events] == [ToolResultEvent, ArtifactEvent, ArtifactEvent]
        assert events[0].tool_result.result == "ok"
        assert events[0].success
        assert [e.artifact for e in events[1:]] == [a, b]
        assert all(e.tool_call_id == "call_render" for e in events[1:])
        assert all(e.message_id == "m1" for e in events)

    @pytest.mark.asyncio
    async def test_string_result_has_no_artifacts(self, sample_tool):
        orchestrator = ToolOrchestrator()
        batch = orchestrator.prepare([sample_tool], [_call("greet", name="a")])
        events = await _collect(orchestrator, batch)

        assert len(events) == 1
        assert events[0].tool_result.artifacts == []

    @pytest.mark.asyncio
    async def test_failed_result_event(self):
        orchestrator = ToolOrchestrator()
        batch = orchestrator.prepare([], [_call("nope")])
        events = await _collect(orchestrator, batch)

        assert not events[0].success
        assert "not found" in events[0].error

    @pytest.mark.asyncio
    async def test_result_appended_before_event_yielded(self, sample_tool):
        orchestrator = ToolOrchestrator()
        batch = orchestrator.prepare(
            [sample_tool], [_call("greet", "c1", name="a"), _call("greet", "c2", name="b")],
        )
        seen = []
        async for event in orchestrator.stream(batch):
            seen.append(len(batch.results))
        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_abandoning_stream_cancels_outstanding_tasks(self):
        cancelled = asyncio.Event()

        @tool(concurrent=True)
        async def quick():
            return "ok"

        @tool(concurrent=True)
        async def hang():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        orchestrator = ToolOrchestrator()
        batch = orchestrator.prepare([quick, hang], [_call("quick"), _call("hang")])
        stream = orchestrator.stream(batch)
        first = await stream.__anext__()
        await stream.aclose()

        assert first.tool_result.result == "ok"
        assert cancelled.is_set()


class RecordingObserver(StreamObserver):
    def __init__(self):
        self.log = []

    def on_tool_call_start(self, tool_call):
        self.log.append(("start", tool_call.id))

    def on_tool_call_end(self, tool_call, result):
        self.log.append(("end", tool_call.id, result.is_error))


class TestObservers:
    @pytest.mark.asyncio
    async def test_observer_notified_around_each_call(self, sample_tool):
        observer = RecordingObserver()
        await ToolOrchestrator([observer]).execute(
            [sample_tool], [_call("greet", "c1", name="a")],
        )
        assert observer.log == [("start", "c1"), ("end", "c1", False)]
