import asyncio
import json

import pytest

from turnstream.application.chat_service import ChatService
from turnstream.domain.interfaces.chat_backend import UploadedFile
from turnstream.domain.interfaces.stream_reader import ReadResult
from turnstream.domain.models.turn import Role
from turnstream.infrastructure.config.settings import (
    AppSettings, BackendSettings, PrivacySettings, StreamSettings,
)
from turnstream.utils import BackendError, ConfigurationError, StreamTransportError


def _sse(payload) -> str:
    return 'data: ' + json.dumps(payload) + '\n\n'


def _reply(text, conversation_id='conv-1', message_id='m-1'):
    return (
        _sse({'event': 'message', 'task_id': 't-1', 'conversation_id': conversation_id,
              'message_id': message_id, 'answer': text})
        + _sse({'event': 'workflow_finished', 'data': {'status': 'succeeded'}})
    )


class _Reader:
    def __init__(self, body, block=False):
        self._chunks = [body.encode('utf-8')] if body else []
        self._block = block
        self._cancelled = asyncio.Event()

    async def read(self):
        if self._chunks:
            return ReadResult(value=self._chunks.pop(0))
        if self._block:
            await self._cancelled.wait()
        return ReadResult(done=True)

    async def cancel(self):
        self._cancelled.set()


class _FakeBackend:
    def __init__(self, bodies=(), suggestions=None, block=False):
        self.bodies = list(bodies)
        self.suggestions = suggestions
        self.block = block
        self.requests = []
        self.stopped = []
        self.open_error = None
        self.messages = []

    async def open_chat_stream(self, request):
        self.requests.append(request)
        if self.open_error is not None:
            raise self.open_error
        return _Reader(self.bodies.pop(0) if self.bodies else '', block=self.block)

    async def stop_generation(self, task_id):
        self.stopped.append(task_id)

    async def fetch_suggestions(self, message_id):
        if isinstance(self.suggestions, Exception):
            raise self.suggestions
        return list(self.suggestions or [])

    async def upload_file(self, path):
        return UploadedFile(id='f-1', name=path.rsplit('/', 1)[-1])

    async def fetch_messages(self, conversation_id, limit=50):
        return list(self.messages)

    async def aclose(self):
        pass


def _settings(privacy=True, **backend):
    backend.setdefault('api_key', 'app-test')
    backend.setdefault('api_url', 'https://dify.example/v1')
    return AppSettings(
        backend=BackendSettings(**backend),
        stream=StreamSettings(display_grace_ms=0),
        privacy=PrivacySettings(enabled=privacy),
    )


@pytest.mark.asyncio
async def test_missing_configuration_short_circuits():
    backend = _FakeBackend()
    service = ChatService(backend, _settings(api_key=''))
    with pytest.raises(ConfigurationError) as excinfo:
        await service.send('hello')
    assert 'DIFY_API_KEY' in str(excinfo.value)
    assert backend.requests == []
    assert service.history == ()


@pytest.mark.asyncio
async def test_send_sanitizes_and_restores():
    backend = _FakeBackend([_reply('I will call {{PHONE_NUMBER_A1}} now')], suggestions=['Anything else?'])
    service = ChatService(backend, _settings(), clock=lambda: 0.0)

    record = await service.send('please call 090-1234-5678')

    request = backend.requests[0]
    assert request.query == 'please call {{PHONE_NUMBER_A1}}'
    assert 'privacy_guidance' in request.inputs
    assert record.text == 'I will call {{PHONE_NUMBER_A1}} now'
    assert service.restore_text(record.text) == 'I will call 090-1234-5678 now'
    assert record.suggestions == ('Anything else?',)
    assert [r.role for r in service.history] == [Role.USER, Role.ASSISTANT]
    assert service.history[0].text == 'please call {{PHONE_NUMBER_A1}}'


@pytest.mark.asyncio
async def test_privacy_can_be_disabled_or_narrowed():
    backend = _FakeBackend([_reply('ok'), _reply('ok')])
    service = ChatService(backend, _settings(privacy=False))
    await service.send('mail a@example.com')
    assert backend.requests[0].query == 'mail a@example.com'
    assert 'privacy_guidance' not in backend.requests[0].inputs

    service = ChatService(backend, _settings())
    await service.send('mail a@example.com or 090-1234-5678', exclude_categories=['email'])
    assert backend.requests[1].query == 'mail a@example.com or {{PHONE_NUMBER_A1}}'


@pytest.mark.asyncio
async def test_conversation_id_carries_to_next_turn():
    backend = _FakeBackend([_reply('one', conversation_id='conv-42'), _reply('two', conversation_id='conv-42')])
    service = ChatService(backend, _settings())
    await service.send('first')
    await service.send('second')
    assert backend.requests[0].conversation_id is None
    assert backend.requests[1].conversation_id == 'conv-42'
    assert service.conversation_id == 'conv-42'


@pytest.mark.asyncio
async def test_suggestion_failure_is_tolerated():
    backend = _FakeBackend([_reply('fine')], suggestions=RuntimeError('404'))
    record = await ChatService(backend, _settings()).send('hi')
    assert record.text == 'fine'
    assert record.suggestions == ()


@pytest.mark.asyncio
async def test_open_failure_records_failed_turn():
    backend = _FakeBackend()
    backend.open_error = StreamTransportError('Could not open stream: All connection attempts failed')
    service = ChatService(backend, _settings())
    with pytest.raises(StreamTransportError) as excinfo:
        await service.send('hi')
    assert excinfo.value.turn.error.kind == 'NETWORK_LOST'
    assert service.history[-1].failed
    assert not service.streaming


@pytest.mark.asyncio
async def test_rejected_stream_records_failed_turn():
    backend = _FakeBackend()
    backend.open_error = BackendError(503, 'Service Unavailable')
    service = ChatService(backend, _settings())
    with pytest.raises(BackendError):
        await service.send('hi')

    user, assistant = service.history
    assert user.role is Role.USER
    assert assistant.role is Role.ASSISTANT
    assert assistant.failed
    assert assistant.error.kind == 'CAPACITY_OVERLOAD'
    assert assistant.error.title == 'The model is at full capacity'
    assert not service.streaming


@pytest.mark.asyncio
async def test_stop_during_stream():
    body = _sse({'event': 'message', 'task_id': 't-7', 'answer': 'partial'})
    backend = _FakeBackend([body], suggestions=['x'], block=True)
    service = ChatService(backend, _settings(), clock=lambda: 0.0)

    task = asyncio.ensure_future(service.send('go'))
    for _ in range(10):
        await asyncio.sleep(0)
    assert service.streaming
    with pytest.raises(RuntimeError):
        await service.send('again')

    assert await service.stop() is True
    record = await task
    assert record.was_stopped
    assert record.text == 'partial'
    assert record.suggestions == ()
    assert backend.stopped == ['t-7']
    assert await service.stop() is False


@pytest.mark.asyncio
async def test_upload_and_file_context():
    backend = _FakeBackend([_reply('read it')])
    service = ChatService(backend, _settings())
    uploaded = await service.upload_file('/tmp/report.pdf')
    await service.send('summarize', files=[uploaded])
    assert backend.requests[0].file_ids == ['f-1']
    assert [f.name for f in service.session_files] == ['report.pdf']
    assert service.history[0].files == ('report.pdf',)


@pytest.mark.asyncio
async def test_load_history_and_clear():
    backend = _FakeBackend()
    backend.messages = [{
        'id': 'm1', 'conversation_id': 'c1', 'query': 'q', 'answer': '{"answer": "a"}',
        'message_files': [{'id': 'f9', 'filename': 'doc.pdf'}], 'created_at': 1700000000,
    }]
    service = ChatService(backend, _settings())
    records = await service.load_history('c1')
    assert [r.text for r in records] == ['q', 'a']
    assert service.conversation_id == 'c1'
    assert [f.name for f in service.session_files] == ['doc.pdf']

    service.vault.sanitize('a@example.com')
    service.clear()
    assert service.history == ()
    assert service.conversation_id is None
    assert not service.vault.has_entries()
