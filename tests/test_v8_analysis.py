from unittest.mock import MagicMock

import pytest

from v8heap.v8_constants import NODE_CONSTANT_PREFIX
from v8heap.v8_analysis import V8Analysis
from v8heap.v8_snapshot import Snapshot
from v8heap.v8_values import tag
from v8heap.redis_backed_refs import RefsRedisConn

from conftest import MemoryImage, SyntheticDecoder, make_snapshot, OBJECT_MAP

P = NODE_CONSTANT_PREFIX
ISOLATE = 0x50000
CONTEXT = 0x60001
EMBED = 0x62001
ENV = 0x70000
WRAP = 0x80000
PERSISTENT = 0x90000
JS_OBJECT = 0xa0001

NODE_CONSTANTS = {
    'node::node_isolate': ISOLATE,
    'v8dbg_isolate_threadlocaltop_offset': 0x100,
    'v8dbg_threadlocaltop_context_offset': 0x20,
    'v8dbg_context_idx_embedder_data': 5,
    P + 'const_Environment__kContextEmbedderDataIndex__int': 32,
    P + 'class__Environment__handleWrapQueue': 0x40,
    P + 'class__Environment__reqWrapQueue': 0x60,
    P + 'class__HandleWrapQueue__headOffset': 0x0,
    P + 'class__HandleWrapQueue__nextOffset': 0x8,
    P + 'class__ReqWrapQueue__headOffset': 0x0,
    P + 'class__ReqWrapQueue__nextOffset': 0x8,
    P + 'class__HandleWrap__node': 0x30,
    P + 'class__ReqWrap__node': 0x20,
    P + 'class__BaseObject__persistent_handle': 0x10,
}


@pytest.fixture
def node_snapshot():
    """An environment with one active handle and no requests."""
    image = MemoryImage(ISOLATE, 0x61000)
    image.put_word(ISOLATE + 0x120, CONTEXT)
    handle_head = ENV + 0x40
    image.put_word(handle_head + 0x8, WRAP + 0x30)
    image.put_word(WRAP + 0x30 + 0x8, handle_head)
    req_head = ENV + 0x60
    image.put_word(req_head + 0x8, req_head)
    image.put_word(WRAP + 0x10, PERSISTENT)
    image.put_word(PERSISTENT, JS_OBJECT)
    # one Object in the heap, holding the handle's object
    image.put_words(0xb0000, [tag(OBJECT_MAP), JS_OBJECT, 0, 0])
    return make_snapshot([image], constants=NODE_CONSTANTS)


@pytest.fixture
def node_decoder(census_maps):
    return SyntheticDecoder(maps=census_maps,
                            natives={CONTEXT: CONTEXT},
                            arrays={(CONTEXT, 5): EMBED, (EMBED, 32): ENV},
                            fields={0xb0000: [('handle', JS_OBJECT)]})


class TestSession:

    def test_queries_need_a_scan(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        for result, err in [v8a.get_type_records(), v8a.get_census_table(),
                            v8a.find_instances('Object'),
                            v8a.find_references_by_value(0x1000)]:
            assert result is None
            assert err.fail()

    def test_no_snapshot(self, node_decoder):
        v8a = V8Analysis(None, node_decoder)
        result, err = v8a.scan_heap_for_objects()
        assert result is None
        assert err.message == "No snapshot attached"
        env, err = v8a.current_environment()
        assert env is None
        assert err.fail()

    def test_scan_and_query(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        result, err = v8a.scan_heap_for_objects()
        assert err.success()
        records, err = v8a.get_type_records()
        assert [r.type_name for r in records] == ['Object']
        instances, _ = v8a.find_instances('Object')
        assert instances == [0xb0000]
        missing, err = v8a.find_instances('Nope')
        assert missing == []
        assert err.success()
        refs, err = v8a.find_references_by_value(JS_OBJECT - 1)
        assert [i.locator for i in refs] == ['handle']
        table, _ = v8a.get_census_table()
        assert 'Object' in table

    def test_assign_drops_session_state(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        v8a.scan_heap_for_objects()
        v8a.current_environment()
        other = make_snapshot([MemoryImage(0x1000, 0x10)])
        v8a.assign(other)
        assert v8a.scan_result is None
        assert v8a.environment is None
        assert v8a.constants.snapshot is other
        assert node_decoder.snapshot is other
        assert v8a.get_type_records()[1].fail()


class TestNodeEnvironment:

    def test_current_environment(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        env, err = v8a.current_environment()
        assert err.success()
        assert env.raw == ENV
        assert v8a.current_environment()[0] is env

    def test_active_handles(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        handles, err = v8a.get_active_handles()
        assert err.success()
        assert handles == [JS_OBJECT]

    def test_active_requests_empty(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        requests, err = v8a.get_active_requests()
        assert err.success()
        assert requests == []

    def test_no_environment(self, node_decoder):
        snapshot = make_snapshot([MemoryImage(0x1000, 0x10)], constants={'unrelated': 1})
        v8a = V8Analysis(snapshot, node_decoder)
        handles, err = v8a.get_active_handles()
        assert handles is None
        assert err.fail()


class TestRedisExport:

    def test_export_cached_references(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        v8a.scan_heap_for_objects()
        v8a.find_references_by_value(JS_OBJECT - 1)
        v8a.find_references_by_property('handle')
        conn = RefsRedisConn(namespace='test', redis_con=MagicMock())
        cnt, err = v8a.export_references_to_redis(conn)
        assert err.success()
        assert cnt == 2
        conn.redis_con.sadd.assert_any_call('test:sinks:%d'%(JS_OBJECT - 1), 0xb0000)

    def test_export_without_connection(self, node_snapshot, node_decoder):
        v8a = V8Analysis(node_snapshot, node_decoder)
        v8a.scan_heap_for_objects()
        cnt, err = v8a.export_references_to_redis(RefsRedisConn(connect=False))
        assert cnt is None
        assert err.fail()
