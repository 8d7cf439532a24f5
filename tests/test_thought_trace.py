import logging

from turnstream.domain.models.events import EventEnvelope, NodeStarted, NodeFinished
from turnstream.domain.models.turn import RenderMode, StepStatus, ThoughtStep, TraceMode
from turnstream.domain.services.thought_trace import (
    GENERATION_DONE_TITLE,
    GENERATION_TITLE,
    ThoughtTraceBuilder,
    TraceContext,
    determine_render_mode,
    intent_display,
)

ENV = EventEnvelope()


def _started(title, node_id=None, node_type=None, inputs=None):
    return NodeStarted(envelope=ENV, node_id=node_id, node_type=node_type, title=title, inputs=inputs or {})


def _finished(title, node_id=None, status='succeeded', outputs=None, error=None, node_type=None):
    return NodeFinished(
        envelope=ENV, node_id=node_id, node_type=node_type, title=title,
        status=status, outputs=outputs or {}, error=error,
    )


def test_hidden_nodes_never_appear():
    builder = ThoughtTraceBuilder()
    assert builder.on_node_started(_started('GATE_Router', 'g1')) is None
    assert builder.on_node_started(_started('Check input', 'c1')) is None
    assert builder.on_node_finished(_finished('GATE_Router', 'g1')) is None
    assert builder.steps == []


def test_custom_hidden_prefixes():
    builder = ThoughtTraceBuilder(hidden_prefixes=('INTERNAL_',))
    assert builder.on_node_started(_started('INTERNAL_x', 'i1', node_type='llm')) is None
    assert builder.on_node_started(_started('GATE_x', 'g1', node_type='llm')) is not None


def test_static_title_and_completion():
    builder = ThoughtTraceBuilder()
    step = builder.on_node_started(_started('LLM_Query_Rewrite', 'n1', node_type='llm'))
    assert step.title == 'Clarifying the key points of the question...'
    assert step.status is StepStatus.PROCESSING
    builder.on_node_finished(_finished('LLM_Query_Rewrite', 'n1'))
    assert builder.get('n1').status is StepStatus.DONE


def test_search_title_prefers_node_input_then_captured_query_then_user_text():
    ctx = TraceContext(user_text='what is the weather')
    builder = ThoughtTraceBuilder(ctx)

    step = builder.on_node_started(_started('TOOL_Perplexity_Search', 's1', 'tool', {'query': 'tokyo weather'}))
    assert step.title == 'Searching the web for: "tokyo weather"'
    assert ctx.trace_mode is TraceMode.SEARCH

    step = builder.on_node_started(_started('TOOL_Perplexity_Search', 's2', 'tool'))
    assert step.title == 'Searching the web for: "what is the weather"'

    ctx.optimized_query = 'tokyo forecast'
    step = builder.on_node_started(_started('TOOL_Perplexity_Search', 's3', 'tool'))
    assert step.title == 'Searching the web for: "tokyo forecast"'


def test_document_title_file_resolution():
    ctx = TraceContext(session_files=['report.pdf', 'notes.txt'])
    builder = ThoughtTraceBuilder(ctx)

    step = builder.on_node_started(_started('TOOL_Doc_Extractor', 'd1', inputs={'target_file': 'x.docx'}))
    assert step.title == 'Analyzing document "x.docx"'

    step = builder.on_node_started(_started('TOOL_Doc_Extractor', 'd2', inputs={'files': ['notes.txt']}))
    assert step.title == 'Analyzing document "notes.txt"'

    step = builder.on_node_started(_started('TOOL_Doc_Extractor', 'd3'))
    assert step.title == 'Analyzing document "2 files"'
    assert ctx.trace_mode is TraceMode.DOCUMENT

    single = ThoughtTraceBuilder(TraceContext(session_files=['only.pdf']))
    assert single.on_node_started(_started('TOOL_Doc_Extractor', 'd4')).title == 'Analyzing document "only.pdf"'


def test_unknown_nodes_fall_back_by_kind():
    builder = ThoughtTraceBuilder()
    assert builder.on_node_started(_started('Extract', 'e1', 'document-extractor')).title == \
        'Analyzing document "attached file"'
    assert builder.on_node_started(_started('Knowledge lookup', 'k1', 'knowledge-retrieval')).title == \
        'Searching the internal knowledge base...'
    assert builder.on_node_started(_started('Writer', 'w1', 'llm')).title == GENERATION_TITLE
    assert builder.on_node_started(_started('Mystery', 'm1', 'variable-aggregator')) is None
    assert len(builder.steps) == 3


def test_pairing_without_node_ids_is_fifo_per_title():
    builder = ThoughtTraceBuilder()
    first = builder.on_node_started(_started('TOOL_Perplexity_Search', inputs={'query': 'a'}))
    second = builder.on_node_started(_started('TOOL_Perplexity_Search', inputs={'query': 'b'}))
    assert first.node_id != second.node_id

    builder.on_node_finished(_finished('TOOL_Perplexity_Search'))
    assert first.status is StepStatus.DONE
    assert second.status is StepStatus.PROCESSING

    builder.on_node_finished(_finished('TOOL_Perplexity_Search'))
    assert second.status is StepStatus.DONE


def test_failed_node_becomes_error_step(caplog):
    builder = ThoughtTraceBuilder()
    builder.on_node_started(_started('TOOL_Perplexity_Search', 's1', 'tool'))
    with caplog.at_level(logging.WARNING):
        step = builder.on_node_finished(_finished('TOOL_Perplexity_Search', 's1', status='failed', error='timeout'))
    assert step.status is StepStatus.ERROR
    assert step.error_message == 'timeout'
    assert step.render_mode is RenderMode.ACTION
    assert builder.node_errors[0].message == 'timeout'
    assert any('Node failed' in r.getMessage() for r in caplog.records)


def test_failed_hidden_node_still_reports_error():
    builder = ThoughtTraceBuilder()
    builder.on_node_started(_started('CODE_parse', 'c1'))
    assert builder.on_node_finished(_finished('CODE_parse', 'c1', status='failed', error='bad')) is None
    assert builder.node_errors[0].title == 'CODE_parse'
    assert builder.steps == []


def test_query_rewrite_output_feeds_later_titles():
    ctx = TraceContext(user_text='raw question')
    builder = ThoughtTraceBuilder(ctx)
    builder.on_node_started(_started('LLM_Query_Rewrite', 'q1', 'llm'))
    builder.on_node_finished(_finished('LLM_Query_Rewrite', 'q1', outputs={
        'text': '```json\n{"optimized_query": "better query", "target_domains": ["a.com"], "thinking": "hmm"}\n```',
    }))
    step = builder.get('q1')
    assert ctx.optimized_query == 'better query'
    assert step.result_label == 'Optimized query'
    assert step.result_value == 'better query'
    assert step.monologue == 'hmm'
    assert step.additional_results[0].value == 'a.com'

    search = builder.on_node_started(_started('TOOL_Perplexity_Search', 's1', 'tool'))
    assert search.title == 'Searching the web for: "better query"'


def test_query_rewrite_plain_text_output():
    ctx = TraceContext()
    builder = ThoughtTraceBuilder(ctx)
    builder.on_node_started(_started('Query Rewriter', 'q1', 'llm'))
    builder.on_node_finished(_finished('Query Rewriter', 'q1', outputs={'text': '  plain rewrite '}))
    assert ctx.optimized_query == 'plain rewrite'


def test_intent_capture_json_and_legacy():
    ctx = TraceContext()
    builder = ThoughtTraceBuilder(ctx)
    builder.on_node_started(_started('LLM_Intent_Analysis', 'i1', 'llm'))
    builder.on_node_finished(_finished('LLM_Intent_Analysis', 'i1', outputs={
        'text': '{"category": "question", "requires_rag": true, "requires_web": false, "thinking": "facts"}',
    }))
    step = builder.get('i1')
    assert ctx.intent == 'QUESTION'
    assert step.title == 'Decision: ❓ Question answering'
    assert step.result_label == 'Search policy'
    assert step.result_value == '📁 Checking internal data'

    legacy_ctx = TraceContext()
    legacy = ThoughtTraceBuilder(legacy_ctx)
    legacy.on_node_started(_started('Intent Classifier', 'i2', 'llm'))
    legacy.on_node_finished(_finished('Intent Classifier', 'i2', outputs={'text': 'search'}))
    assert legacy_ctx.intent == 'SEARCH'
    assert legacy.get('i2').title == 'Decision: 🔍 Web search mode'


def test_intent_display_without_flags():
    assert intent_display('CHAT') == ('💬 Small talk', None)
    assert intent_display('nonsense', True, True) == ('🤖 Processing', '🔍 Checking internal data and the web')


def test_finalize_closes_open_steps_and_retitles_generation():
    builder = ThoughtTraceBuilder()
    builder.on_node_started(_started('Writer', 'w1', 'llm'))
    builder.on_node_started(_started('TOOL_Perplexity_Search', 's1', 'tool'))
    builder.finalize(completed=True)
    assert all(s.status is StepStatus.DONE for s in builder.steps)
    assert builder.get('w1').title == GENERATION_DONE_TITLE
    assert builder.get('w1').icon == 'check'


def test_finalize_after_interruption_keeps_generation_title():
    builder = ThoughtTraceBuilder()
    builder.on_node_started(_started('Writer', 'w1', 'llm'))
    builder.finalize(completed=False)
    assert builder.get('w1').title == GENERATION_TITLE
    assert builder.get('w1').status is StepStatus.DONE


def test_render_modes():
    assert determine_render_mode(ThoughtStep('a', 'x', source_title='final_response')) is RenderMode.SILENT
    assert determine_render_mode(ThoughtStep('b', 'Thinking', node_type='tool')) is RenderMode.ACTION
    assert determine_render_mode(ThoughtStep('c', 'Searching things')) is RenderMode.ACTION
    assert determine_render_mode(ThoughtStep('d', 'Pondering', icon='router')) is RenderMode.MONOLOGUE
    assert determine_render_mode(
        ThoughtStep('e', 'final_response', status=StepStatus.ERROR)
    ) is RenderMode.ACTION
