import pytest

from v8heap.v8_constants import Constants, NODE_CONSTANT_PREFIX
from v8heap.node_queue import Queue, HandleWrap, ReqWrap, Environment

from conftest import MemoryImage, make_snapshot

P = NODE_CONSTANT_PREFIX
QUEUE_CONSTANTS = {
    P + 'class__HandleWrapQueue__headOffset': 0x10,
    P + 'class__HandleWrapQueue__nextOffset': 0x8,
    P + 'class__HandleWrap__node': 0x30,
    P + 'class__BaseObject__persistent_handle': 0x18,
    P + 'class__Environment__handleWrapQueue': 0x40,
}

RAW = 0x1000
HEAD = RAW + 0x10
A, B, C = 0x2000, 0x3000, 0x4000


def list_snapshot(links, constants=QUEUE_CONSTANTS):
    """links maps a node to the value of its next pointer."""
    image = MemoryImage(0x1000, 0x4000)
    for node, nxt in links.items():
        image.put_word(node + 0x8, nxt)
    return make_snapshot([image], constants=constants)


def handle_queue(snapshot, max_length=1024):
    constants = Constants(snapshot)
    return Queue(snapshot, RAW, constants.handle_wrap_queue(), max_length=max_length)


class TestQueue:

    def test_three_nodes_in_link_order(self):
        snapshot = list_snapshot({HEAD: A, A: B, B: C, C: HEAD})
        queue = handle_queue(snapshot)
        assert queue.end() == HEAD
        assert queue.begin() == A
        assert queue.advance(A) == B
        assert list(queue) == [A, B, C]
        assert queue.truncated is False

    def test_empty_list(self):
        snapshot = list_snapshot({HEAD: HEAD})
        assert list(handle_queue(snapshot)) == []

    def test_cycle_that_misses_the_sentinel(self):
        snapshot = list_snapshot({HEAD: A, A: B, B: C, C: A})
        queue = handle_queue(snapshot)
        assert list(queue) == [A, B, C]
        assert queue.truncated is True

    def test_length_bound(self):
        snapshot = list_snapshot({HEAD: A, A: B, B: C, C: HEAD})
        queue = handle_queue(snapshot, max_length=2)
        assert list(queue) == [A, B]
        assert queue.truncated is True

    def test_read_failure_stops(self):
        snapshot = list_snapshot({HEAD: A, A: 0x900000})
        queue = handle_queue(snapshot)
        assert list(queue) == [A, 0x900000]
        assert queue.truncated is True

    def test_last_node_with_unreadable_next_is_yielded(self):
        # the next field of the node sits just past the end of the image
        last = 0x4ff8
        snapshot = list_snapshot({HEAD: last})
        queue = handle_queue(snapshot)
        assert list(queue) == [last]
        assert queue.truncated is True

    def test_unset_offsets_yield_nothing(self):
        snapshot = list_snapshot({HEAD: A, A: HEAD}, constants={'unrelated': 0})
        queue = handle_queue(snapshot)
        assert queue.is_valid() is False
        assert queue.begin() == -1
        assert list(queue) == []


class TestWrappers:

    def test_element_recovered_by_offset(self):
        snapshot = list_snapshot({})
        constants = Constants(snapshot)
        wrap = HandleWrap.from_list_node(snapshot, constants, A + 0x30)
        assert wrap.raw == A

    def test_missing_node_offset(self):
        snapshot = list_snapshot({})
        assert ReqWrap.from_list_node(snapshot, Constants(snapshot), A) is None

    def test_persistent_handle(self):
        image = MemoryImage(0x1000, 0x4000)
        image.put_word(A + 0x18, 0x3000)
        image.put_word(0x3000, 0x7001)
        snapshot = make_snapshot([image], constants=QUEUE_CONSTANTS)
        wrap = HandleWrap(snapshot, Constants(snapshot), A)
        assert wrap.persistent_addr() == 0x3000
        assert wrap.v8_object_addr() == 0x7001

    def test_persistent_handle_unreadable(self):
        image = MemoryImage(0x1000, 0x4000)
        image.put_word(A + 0x18, 0x900000)
        snapshot = make_snapshot([image], constants=QUEUE_CONSTANTS)
        wrap = HandleWrap(snapshot, Constants(snapshot), A)
        assert wrap.v8_object_addr() == -1


class TestEnvironmentQueues:

    def test_handle_wrap_queue(self):
        env_raw = 0x1000
        head = env_raw + 0x40 + 0x10
        snapshot = list_snapshot({head: A + 0x30, A + 0x30: head})
        env = Environment(snapshot, Constants(snapshot), env_raw)
        queue, err = env.handle_wrap_queue()
        assert err.success()
        assert [w.raw for w in queue] == [A]

    def test_req_wrap_queue_missing_offsets(self):
        snapshot = list_snapshot({})
        env = Environment(snapshot, Constants(snapshot), 0x1000)
        queue, err = env.req_wrap_queue()
        assert queue is None
        assert err.fail()
