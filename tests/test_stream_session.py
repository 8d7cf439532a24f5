import asyncio
import json
import logging

import pytest

from turnstream.application.stream_session import StreamSession
from turnstream.domain.interfaces.stream_reader import ReadResult
from turnstream.domain.services.response_assembler import ResponseAssembler
from turnstream.utils import StreamTransportError


def _sse(payload) -> str:
    return 'data: ' + json.dumps(payload) + '\n\n'


HEAD = (
    _sse({'event': 'node_started', 'task_id': 'task-9', 'conversation_id': 'conv-9',
          'data': {'node_id': 'w', 'node_type': 'llm', 'title': 'Writer'}})
    + _sse({'event': 'message', 'task_id': 'task-9', 'message_id': 'm-9', 'answer': 'Hello '})
)


class _ScriptedReader:
    """Returns the scripted chunks, then either blocks until cancelled or ends."""

    def __init__(self, chunks, block_at_end=False, fail_with=None):
        self._chunks = list(chunks)
        self._block = block_at_end
        self._fail_with = fail_with
        self._cancelled = asyncio.Event()
        self.cancel_calls = 0

    async def read(self):
        if self._chunks:
            chunk = self._chunks.pop(0)
            return ReadResult(value=chunk.encode('utf-8') if isinstance(chunk, str) else chunk)
        if self._fail_with is not None:
            raise self._fail_with
        if self._block:
            await self._cancelled.wait()
        return ReadResult(done=True)

    async def cancel(self):
        self.cancel_calls += 1
        self._cancelled.set()


def _assembler():
    return ResponseAssembler(grace_ms=0, clock=lambda: 0.0)


async def _spin(times=10):
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_run_consumes_records_split_across_reads():
    body = HEAD + _sse({'event': 'message', 'answer': 'world'}) + _sse(
        {'event': 'workflow_finished', 'data': {'status': 'succeeded'}})
    reader = _ScriptedReader([body[i:i + 7] for i in range(0, len(body), 7)])
    session = StreamSession(reader, _assembler())

    record = await session.run()

    assert record.text == 'Hello world'
    assert record.conversation_id == 'conv-9'
    assert not record.was_stopped


@pytest.mark.asyncio
async def test_unterminated_final_record_is_flushed():
    body = HEAD + 'data: ' + json.dumps({'event': 'workflow_finished', 'data': {'status': 'succeeded'}})
    session = StreamSession(_ScriptedReader([body]), _assembler())
    record = await session.run()
    assert record.text == 'Hello '
    assert session.assembler.finished


@pytest.mark.asyncio
async def test_late_message_end_after_finish_is_read():
    body = HEAD + _sse({'event': 'workflow_finished', 'data': {'status': 'succeeded'}}) + _sse(
        {'event': 'message_end', 'metadata': {'retriever_resources': [{'document_name': 'kb.pdf'}]}})
    record = await StreamSession(_ScriptedReader([body]), _assembler()).run()
    assert [c.label for c in record.citations] == ['kb.pdf']


@pytest.mark.asyncio
async def test_stop_cancels_reader_and_notifies_backend():
    stopped = []

    async def stop_backend(task_id):
        stopped.append(task_id)

    reader = _ScriptedReader([HEAD], block_at_end=True)
    session = StreamSession(reader, _assembler(), stop_backend=stop_backend)
    task = asyncio.ensure_future(session.run())
    await _spin()

    await session.stop()
    record = await task

    assert record.was_stopped
    assert record.text == 'Hello '
    assert reader.cancel_calls == 1
    assert stopped == ['task-9']

    # second stop is a no-op
    await session.stop()
    assert reader.cancel_calls == 1


@pytest.mark.asyncio
async def test_stop_survives_backend_failure(caplog):
    async def stop_backend(task_id):
        raise RuntimeError('stop endpoint down')

    reader = _ScriptedReader([HEAD], block_at_end=True)
    session = StreamSession(reader, _assembler(), stop_backend=stop_backend)
    task = asyncio.ensure_future(session.run())
    await _spin()

    with caplog.at_level(logging.WARNING):
        await session.stop()
    record = await task

    assert record.was_stopped
    assert any('stop endpoint down' in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_stop_does_not_wait_past_timeout(caplog):
    async def stop_backend(task_id):
        await asyncio.sleep(10)

    reader = _ScriptedReader([HEAD], block_at_end=True)
    session = StreamSession(reader, _assembler(), stop_backend=stop_backend, stop_timeout_s=0.01)
    task = asyncio.ensure_future(session.run())
    await _spin()

    with caplog.at_level(logging.WARNING):
        await session.stop()
    record = await task

    assert record.was_stopped
    assert any('timed out' in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_transport_failure_carries_partial_turn():
    reader = _ScriptedReader([HEAD], fail_with=StreamTransportError('Stream read failed: connection reset'))
    session = StreamSession(reader, _assembler())

    with pytest.raises(StreamTransportError) as excinfo:
        await session.run()

    turn = excinfo.value.turn
    assert turn is not None
    assert turn.text == 'Hello '
    assert turn.error.kind == 'NETWORK_LOST'


@pytest.mark.asyncio
async def test_unexpected_read_error_is_wrapped():
    reader = _ScriptedReader([], fail_with=OSError('socket closed'))
    with pytest.raises(StreamTransportError) as excinfo:
        await StreamSession(reader, _assembler()).run()
    assert excinfo.value.turn.failed
