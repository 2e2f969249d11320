from unittest.mock import MagicMock, patch

from v8heap.redis_backed_refs import RefsRedisConn
from v8heap.v8_refs import ReferenceRecord


def make_conn():
    return RefsRedisConn(namespace='dump1', redis_con=MagicMock())


class TestRefsRedisConn:

    def test_connects_with_settings(self):
        with patch('v8heap.redis_backed_refs.redis.StrictRedis') as strict:
            conn = RefsRedisConn(redis_host='10.0.0.2', redis_port=6380, redis_db=3)
        strict.assert_called_once_with(host='10.0.0.2', port=6380, db=3)
        assert conn.redis_con is strict.return_value

    def test_keys_are_namespaced(self):
        conn = make_conn()
        assert conn.sinks_set_key() == 'dump1:sinks'
        assert conn.sinks_srcs_set_key(16) == 'dump1:sinks:16'
        assert conn.prop_holders_set_key('next') == 'dump1:props:next'
        assert conn.string_holders_set_key('hi') == 'dump1:strings:hi'
        conn.namespace = None
        assert conn.sinks_set_key() == 'sinks'

    def test_add_value_reference(self):
        conn = make_conn()
        record = ReferenceRecord()
        info = record.add_reference(0x10, 'Object', 'next', 0x20)
        assert conn.add_reference_info(info) is True
        sadd = conn.redis_con.sadd
        sadd.assert_any_call('dump1:sinks', 0x20)
        sadd.assert_any_call('dump1:srcs', 0x10)
        sadd.assert_any_call('dump1:sinks:32', 0x10)
        sadd.assert_any_call('dump1:props:next', 0x10)

    def test_add_string_reference(self):
        conn = make_conn()
        record = ReferenceRecord()
        record.add_reference(0x10, 'Object', 'name', 0x30, 'hi')
        assert conn.add_reference_record(record) == 1
        sadd = conn.redis_con.sadd
        sadd.assert_any_call('dump1:strings', 'hi')
        sadd.assert_any_call('dump1:strings:hi', 0x10)

    def test_reads(self):
        conn = make_conn()
        conn.redis_con.smembers.return_value = set([b'16'])
        assert conn.get_sink_srcs_set(32) == set([b'16'])
        conn.redis_con.smembers.assert_called_with('dump1:sinks:32')
        conn.has_sink(32)
        conn.redis_con.sismember.assert_called_with('dump1:sinks', 32)
        conn.get_property_holders('next')
        conn.redis_con.smembers.assert_called_with('dump1:props:next')

    def test_no_connection(self):
        conn = RefsRedisConn(connect=False)
        assert conn.has_sink(1) is None
        assert conn.get_sink_srcs_set(1) is None
        assert conn.get_property_holders('x') is None
        assert conn.get_string_holders('x') is None
        assert conn.add_reference_record(ReferenceRecord()) is None

    def test_sink_queries(self):
        conn = make_conn()
        conn.sink_has_src(32, 16)
        conn.redis_con.sismember.assert_called_with('dump1:sinks:32', 16)
        conn.get_sink_refs_set(32)
        conn.redis_con.smembers.assert_called_with('dump1:refs:32')
        conn.get_sinks_set()
        conn.redis_con.smembers.assert_called_with('dump1:sinks')
        conn.has_src(16)
        conn.redis_con.sismember.assert_called_with('dump1:srcs', 16)

    def test_element_index_not_recorded_as_property(self):
        conn = make_conn()
        record = ReferenceRecord()
        info = record.add_reference(0x10, 'Array', 3, 0x20)
        assert conn.add_reference_info(info) is True
        keys = [c[0][0] for c in conn.redis_con.sadd.call_args_list]
        assert 'dump1:props' not in keys
        assert 'dump1:props:3' not in keys
        assert 'dump1:sinks:32' in keys
