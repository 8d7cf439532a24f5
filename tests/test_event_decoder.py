import json
import logging

import pytest

from turnstream.domain.models.events import (
    EventKind, NodeStarted, NodeFinished, MessageChunk, MessageEnd, WorkflowFinished, ErrorEvent,
)
from turnstream.domain.services.event_decoder import EventDecoder


def _record(payload) -> str:
    return 'data: ' + json.dumps(payload)


@pytest.fixture
def decoder():
    return EventDecoder()


def test_node_started_reads_nested_data(decoder):
    event = decoder.decode(_record({
        'event': 'node_started',
        'task_id': 't1',
        'conversation_id': 'c1',
        'message_id': 'm1',
        'data': {'node_id': 'n1', 'node_type': 'tool', 'title': 'TOOL_Perplexity_Search', 'inputs': {'query': 'q'}},
    }))
    assert isinstance(event, NodeStarted)
    assert event.kind is EventKind.NODE_STARTED
    assert event.node_id == 'n1'
    assert event.inputs == {'query': 'q'}
    assert event.envelope.task_id == 't1'
    assert event.envelope.conversation_id == 'c1'


def test_node_finished_failure(decoder):
    event = decoder.decode(_record({
        'event': 'node_finished',
        'data': {'node_id': 'n1', 'title': 'X', 'status': 'failed', 'error': 'boom'},
    }))
    assert isinstance(event, NodeFinished)
    assert event.failed
    assert event.error == 'boom'


@pytest.mark.parametrize('kind', ['message', 'agent_message'])
def test_message_chunks(decoder, kind):
    event = decoder.decode(_record({'event': kind, 'answer': 'Hi', 'id': 'm9'}))
    assert isinstance(event, MessageChunk)
    assert event.answer == 'Hi'
    # message id falls back to the record id
    assert event.envelope.message_id == 'm9'


def test_message_end_retriever_resources(decoder):
    event = decoder.decode(_record({
        'event': 'message_end',
        'metadata': {
            'retriever_resources': [{'document_name': 'a.pdf'}, 'junk'],
            'usage': {'total_tokens': 12},
        },
    }))
    assert isinstance(event, MessageEnd)
    assert event.retriever_resources == [{'document_name': 'a.pdf'}]
    assert event.usage == {'total_tokens': 12}


def test_workflow_finished_and_error(decoder):
    finished = decoder.decode(_record({'event': 'workflow_finished', 'data': {'status': 'succeeded'}}))
    assert isinstance(finished, WorkflowFinished)
    assert not finished.failed

    error = decoder.decode(_record({'event': 'error', 'status': 503, 'code': 'overloaded', 'message': 'busy'}))
    assert isinstance(error, ErrorEvent)
    assert error.status == 503
    assert error.message == 'busy'


def test_multiline_data_is_joined(decoder):
    event = decoder.decode('data: {"event": "message",\ndata:  "answer": "ok"}')
    assert isinstance(event, MessageChunk)
    assert event.answer == 'ok'


def test_unknown_event_is_ignored(decoder):
    assert decoder.decode(_record({'event': 'ping'})) is None
    assert decoder.decode(': comment only') is None


def test_garbage_logs_warning_and_continues(decoder, caplog):
    with caplog.at_level(logging.WARNING):
        assert decoder.decode('data: {not json') is None
        assert decoder.decode('data: [1, 2]') is None
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 2
