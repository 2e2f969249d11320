#Copyright 2015 Adam Pridgen
#
#Licensed under the Apache License, Version 2.0 (the "License");
#you may not use this file except in compliance with the License.
#You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
#Unless required by applicable law or agreed to in writing, software
#distributed under the License is distributed on an "AS IS" BASIS,
#WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#See the License for the specific language governing permissions and
#limitations under the License.

from v8heap.v8_errors import Error
from v8heap.v8_log import log_debug

MAX_QUEUE_LENGTH = 1 << 16


class Queue (object):
    '''
    View over one of node's intrusive lists (ListHead/ListNode).  The list
    head lives at raw + kHeadOffset and is its own sentinel; every node's
    next pointer is at node + kNextOffset.  Iterating yields
    element_factory(node) for each node in link order.
    '''
    def __init__ (self, snapshot, raw, queue_constants, element_factory=None,
                  max_length=MAX_QUEUE_LENGTH):
        self.snapshot = snapshot
        self.raw = raw
        self.constants = queue_constants
        self.element_factory = element_factory if not element_factory is None \
                                               else (lambda node: node)
        self.max_length = max_length
        self.truncated = False

    def head_offset (self):
        return self.constants.get('kHeadOffset')

    def next_offset (self):
        return self.constants.get('kNextOffset')

    def is_valid (self):
        return self.raw >= 0 and self.head_offset() >= 0 and self.next_offset() >= 0

    def end (self):
        if not self.is_valid():
            return -1
        return self.raw + self.head_offset()

    def begin (self):
        if not self.is_valid():
            return -1
        return self.advance(self.end())

    def advance (self, current):
        if current is None or current < 0:
            return -1
        ptr = self.snapshot.read_pointer(current + self.next_offset())
        return -1 if ptr is None else ptr

    def nodes (self):
        self.truncated = False
        sentinel = self.end()
        if sentinel < 0:
            log_debug("Queue at 0x%08x has unset offsets"%self.raw)
            return
        seen = set()
        node = self.begin()
        while node >= 0 and node != sentinel:
            if node in seen:
                log_debug("Queue at 0x%08x revisits node 0x%08x"%(self.raw, node))
                self.truncated = True
                return
            if len(seen) >= self.max_length:
                log_debug("Queue at 0x%08x exceeds %d nodes"%(self.raw, self.max_length))
                self.truncated = True
                return
            seen.add(node)
            yield node
            nxt = self.advance(node)
            if nxt < 0:
                log_debug("Failed to read the next pointer of node 0x%08x"%node)
                self.truncated = True
                return
            node = nxt

    def __iter__ (self):
        for node in self.nodes():
            yield self.element_factory(node)


class BaseObject (object):
    def __init__ (self, snapshot, constants, raw):
        self.snapshot = snapshot
        self.constants = constants
        self.raw = raw

    def __str__ (self):
        return "%s(0x%016x)"%(self.__class__.__name__, self.raw)

    def persistent_addr (self):
        offset = self.constants.base_object.get('kPersistentHandleOffset')
        if offset < 0:
            return -1
        ptr = self.snapshot.read_pointer(self.raw + offset)
        return -1 if ptr is None else ptr

    def v8_object_addr (self):
        persistent = self.persistent_addr()
        if persistent <= 0:
            return -1
        obj = self.snapshot.read_pointer(persistent)
        return -1 if obj is None else obj


class ListNodeElement (BaseObject):
    NODE_GROUP = None

    @classmethod
    def from_list_node (cls, snapshot, constants, node):
        '''
        Element containing the list node at node: the node's address minus
        the offset of the node field in the element.
        '''
        offset = getattr(constants, cls.NODE_GROUP).get('kListNodeOffset')
        if offset < 0:
            return None
        return cls(snapshot, constants, node - offset)


class HandleWrap (ListNodeElement):
    NODE_GROUP = 'handle_wrap'


class ReqWrap (ListNodeElement):
    NODE_GROUP = 'req_wrap'


class Environment (object):
    def __init__ (self, snapshot, constants, raw, max_queue_length=MAX_QUEUE_LENGTH):
        self.snapshot = snapshot
        self.constants = constants
        self.raw = raw
        self.max_queue_length = max_queue_length

    def __str__ (self):
        return "Environment(0x%016x)"%self.raw

    def _queue (self, offset_attr, queue_group, element_cls):
        offset = self.constants.env.get(offset_attr)
        if offset < 0:
            return None, Error.failure("Missing %s for the environment"%offset_attr)
        factory = lambda node: element_cls.from_list_node(self.snapshot, self.constants, node)
        queue = Queue(self.snapshot, self.raw + offset, queue_group(),
                      factory, self.max_queue_length)
        if not queue.is_valid():
            return None, Error.failure("Missing queue offsets for %s"%offset_attr)
        return queue, Error.ok()

    def handle_wrap_queue (self):
        return self._queue('kHandleWrapQueueOffset', self.constants.handle_wrap_queue, HandleWrap)

    def req_wrap_queue (self):
        return self._queue('kReqWrapQueueOffset', self.constants.req_wrap_queue, ReqWrap)
