"""
Tests for Result Sink
Tests stream and aggregate views over one execution
"""

import asyncio

import pytest

from execution.errors import QueryFailedError
from execution.models import ExecutionResult, ResultPage
from execution.result_sink import ResultSink


async def drain(stream):
    return [record async for record in stream]


class TestRecordStream:
    """Test the incremental view"""

    @pytest.mark.asyncio
    async def test_records_then_end_in_order(self):
        sink = ResultSink()
        stream = sink.subscribe()

        sink.publish(ResultPage(
            records=[{"n": 1}, {"n": 2}, {"n": 3}],
            next_token="tok",
            metadata={"QueryExecutionId": "q1"}
        ))

        assert await drain(stream) == [{"n": 1}, {"n": 2}, {"n": 3}]
        assert stream.metadata == {"QueryExecutionId": "q1"}
        assert stream.next_token == "tok"
        assert stream.closed

    @pytest.mark.asyncio
    async def test_stream_raises_execution_error(self):
        sink = ResultSink()
        stream = sink.subscribe()
        error = QueryFailedError("FAILED: Execution Error")

        sink.emit({"n": 1})
        sink.fail(error)

        assert await stream.__anext__() == {"n": 1}
        with pytest.raises(QueryFailedError) as exc_info:
            await stream.__anext__()
        assert exc_info.value is error
        assert stream.metadata is None

    @pytest.mark.asyncio
    async def test_stream_is_single_pass(self):
        sink = ResultSink()
        stream = sink.subscribe()
        sink.publish(ResultPage(records=[{"n": 1}]))

        assert await drain(stream) == [{"n": 1}]
        assert await drain(stream) == []

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_completion_only(self):
        """No replay: attached after completion sees zero records and one end"""
        sink = ResultSink()
        sink.publish(ResultPage(records=[{"n": 1}, {"n": 2}], metadata={"a": 1}))

        late = sink.subscribe()

        assert await drain(late) == []
        assert late.metadata == {"a": 1}
        with pytest.raises(StopAsyncIteration):
            await late.__anext__()

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_error_once(self):
        sink = ResultSink()
        sink.fail(QueryFailedError("nope"))

        late = sink.subscribe()

        with pytest.raises(QueryFailedError):
            await late.__anext__()
        with pytest.raises(StopAsyncIteration):
            await late.__anext__()

    @pytest.mark.asyncio
    async def test_mid_stream_subscriber_misses_earlier_records(self):
        sink = ResultSink()
        early = sink.subscribe()

        sink.emit({"n": 1})
        mid = sink.subscribe()
        sink.emit({"n": 2})
        sink.end()

        assert await drain(early) == [{"n": 1}, {"n": 2}]
        assert await drain(mid) == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_aclose_detaches(self):
        sink = ResultSink()
        stream = sink.subscribe()
        assert sink.subscriber_count == 1

        await stream.aclose()
        sink.emit({"n": 1})

        assert sink.subscriber_count == 0
        assert await drain(stream) == []


class TestAggregateView:
    """Test the aggregate view"""

    @pytest.mark.asyncio
    async def test_resolves_with_records_and_metadata(self):
        sink = ResultSink()
        future = sink.to_result()

        sink.publish(ResultPage(records=[{"n": 1}, {"n": 2}], metadata={"m": True}))
        result = await asyncio.wait_for(future, timeout=1)

        assert isinstance(result, ExecutionResult)
        assert result.records == [{"n": 1}, {"n": 2}]
        assert result.metadata == {"m": True}

    @pytest.mark.asyncio
    async def test_rejects_with_same_error_as_stream(self):
        sink = ResultSink()
        future = sink.to_result()
        stream = sink.subscribe()
        error = QueryFailedError("bad")

        sink.fail(error)

        with pytest.raises(QueryFailedError) as from_future:
            await asyncio.wait_for(future, timeout=1)
        with pytest.raises(QueryFailedError) as from_stream:
            await drain(stream)

        assert from_future.value is error
        assert from_stream.value is error

    @pytest.mark.asyncio
    async def test_both_views_share_one_execution(self):
        sink = ResultSink()
        future = sink.to_result()
        stream = sink.subscribe()

        sink.publish(ResultPage(records=[{"n": 1}]))

        assert await drain(stream) == [{"n": 1}]
        assert (await future).records == [{"n": 1}]


class TestProducerSide:
    """Test completion signalling"""

    @pytest.mark.asyncio
    async def test_wait_returns_after_end(self):
        sink = ResultSink()
        waiter = asyncio.ensure_future(sink.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        sink.end({"x": 1})
        await asyncio.wait_for(waiter, timeout=1)

        assert sink.done
        assert sink.metadata == {"x": 1}
        assert sink.error is None

    def test_emit_after_end_raises(self):
        sink = ResultSink()
        sink.end()

        with pytest.raises(RuntimeError):
            sink.emit({"n": 1})
        with pytest.raises(RuntimeError):
            sink.fail(QueryFailedError("late"))

    def test_end_without_metadata(self):
        sink = ResultSink()
        sink.end()

        assert sink.metadata == {}
