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

from collections import namedtuple
from bitstring import ConstBitStream

from v8heap.v8_errors import Error
from v8heap.v8_log import log_debug

NODE_CONSTANT_PREFIX = "nodedbg_"
SUPPORTED_SYMBOL_SIZES = (1, 2, 4, 8)

# attr: attribute set on the group, name/fallback: symbol names (prefixed
# unless raw), default: value used when neither symbol resolves
ConstantSpec = namedtuple('ConstantSpec', ['attr', 'name', 'fallback', 'default', 'raw'])

def constant(attr, name, fallback=None, default=-1, raw=False):
    return ConstantSpec(attr, name, fallback, default, raw)


V8_CONTEXT = [
    constant('kEmbedderDataIndex', 'v8dbg_context_idx_embedder_data', raw=True),
    constant('kIsolateThreadLocalTopOffset', 'v8dbg_isolate_threadlocaltop_offset', raw=True),
    constant('kThreadLocalTopContextOffset', 'v8dbg_threadlocaltop_context_offset', raw=True),
    constant('kIsolate', 'node::node_isolate', fallback='_ZN4node12node_isolateE', raw=True),
]

NODE_ENVIRONMENT = [
    constant('kReqWrapQueueOffset',
             'offset_Environment__req_wrap_queue___Environment_ReqWrapQueue',
             'class__Environment__reqWrapQueue'),
    constant('kHandleWrapQueueOffset',
             'offset_Environment__handle_wrap_queue___Environment_HandleWrapQueue',
             'class__Environment__handleWrapQueue'),
    constant('kEnvContextEmbedderDataIndex',
             'const_Environment__kContextEmbedderDataIndex__int',
             'environment_context_idx_embedder_data'),
]

NODE_REQ_WRAP_QUEUE = [
    constant('kHeadOffset',
             'offset_Environment_ReqWrapQueue__head___ListNode_ReqWrapQueue',
             'class__ReqWrapQueue__headOffset'),
    constant('kNextOffset',
             'offset_ListNode_ReqWrap__next___uintptr_t',
             'class__ReqWrapQueue__nextOffset'),
]

NODE_REQ_WRAP = [
    constant('kListNodeOffset',
             'offset_ReqWrap__req_wrap_queue___ListNode_ReqWrapQueue',
             'class__ReqWrap__node'),
]

NODE_HANDLE_WRAP_QUEUE = [
    constant('kHeadOffset',
             'offset_Environment_HandleWrapQueue__head___ListNode_HandleWrap',
             'class__HandleWrapQueue__headOffset'),
    constant('kNextOffset',
             'offset_ListNode_HandleWrap__next___uintptr_t',
             'class__HandleWrapQueue__nextOffset'),
]

NODE_HANDLE_WRAP = [
    constant('kListNodeOffset',
             'offset_HandleWrap__handle_wrap_queue___ListNode_HandleWrap',
             'class__HandleWrap__node'),
]

NODE_BASE_OBJECT = [
    constant('kPersistentHandleOffset',
             'offset_BaseObject__persistent_handle___v8_Persistent_v8_Object',
             'class__BaseObject__persistent_handle'),
]


def sign_extend(raw, little_endian=True):
    fmt = "intle:%d" if little_endian else "intbe:%d"
    if len(raw) == 1:
        fmt = "int:%d"
    return ConstBitStream(bytes=raw).read(fmt%(len(raw)*8))

def lookup_constant(snapshot, name, default=-1):
    '''
    Resolve the value stored at symbol `name`.  Returns (value, Error); on
    any failure the value is `default`.
    '''
    if snapshot is None:
        return default, Error.failure("No snapshot to load %s from"%name)
    matches = snapshot.find_symbols(name)
    if len(matches) == 0:
        return default, Error.failure("Failed to find symbol %s"%name)
    elif len(matches) > 1:
        return default, Error.failure("Symbol %s is ambiguous (%d matches)"%(name, len(matches)))

    addr, size = matches[0]
    # symbols at the end of a section can report a larger extent
    if size >= 8:
        size = 8
    elif not size in SUPPORTED_SYMBOL_SIZES:
        return default, Error.failure("Unexpected symbol size %d for %s"%(size, name))

    raw = snapshot.read_memory(addr, size)
    if raw is None or len(raw) != size:
        return default, Error.failure("Failed to load symbol %s"%name)
    return sign_extend(raw, getattr(snapshot, 'little_endian', True)), Error.ok()


class ConstantsGroup (object):
    '''
    A group of related constants described by a table of ConstantSpec rows.
    Each row becomes an attribute of the group once load() runs; loading
    happens once per snapshot and calling the group loads it on demand:

        env = ConstantsGroup("env", NODE_ENVIRONMENT, prefix="nodedbg_")
        env.assign(snapshot)
        env().kReqWrapQueueOffset
    '''
    def __init__ (self, name, table, prefix=""):
        self.name = name
        self.table = list(table)
        self.prefix = prefix
        self.snapshot = None
        self.loaded = False
        self.failed = set()
        for spec in self.table:
            setattr(self, spec.attr, spec.default)

    def __call__ (self):
        if not self.loaded:
            self.load()
        return self

    def __str__ (self):
        vals = ", ".join(["%s=%d"%(s.attr, getattr(self, s.attr)) for s in self.table])
        return "%s(%s)"%(self.name, vals)

    def is_loaded (self):
        return self.loaded

    def assign (self, snapshot):
        self.loaded = False
        self.snapshot = snapshot
        self.failed = set()
        for spec in self.table:
            setattr(self, spec.attr, spec.default)

    def load_raw_constant (self, name, default=-1):
        value, err = lookup_constant(self.snapshot, name, default)
        if err.fail():
            log_debug("Failed to load %s"%name)
        return value, err

    def load_constant (self, name, default=-1):
        value, err = lookup_constant(self.snapshot, self.prefix + name, default)
        if err.fail():
            log_debug("Failed to load %s"%name)
        return value, err

    def load_constant_fallback (self, name, fallback, default=-1):
        value, err = lookup_constant(self.snapshot, self.prefix + name, default)
        if err.fail() and not fallback is None:
            value, err = lookup_constant(self.snapshot, self.prefix + fallback, default)
        if err.fail():
            log_debug("Failed to load %s"%name)
        return value, err

    def load_spec (self, spec):
        if spec.raw:
            value, err = lookup_constant(self.snapshot, spec.name, spec.default)
            if err.fail() and not spec.fallback is None:
                value, err = lookup_constant(self.snapshot, spec.fallback, spec.default)
            if err.fail():
                log_debug("Failed to load %s"%spec.name)
            return value, err
        return self.load_constant_fallback(spec.name, spec.fallback, spec.default)

    def load (self):
        # idempotent: a loaded group keeps its values until assign()
        if self.loaded:
            return self
        self.loaded = True
        for spec in self.table:
            value, err = self.load_spec(spec)
            setattr(self, spec.attr, value)
            if err.fail():
                self.failed.add(spec.attr)
        return self

    def missing (self):
        return sorted(self.failed)

    def get (self, attr):
        self()
        return getattr(self, attr)


class Constants (object):
    '''
    Session wide catalog: one ConstantsGroup per table, all bound to the
    same snapshot.
    '''
    GROUPS = [
        ('context', V8_CONTEXT, ""),
        ('env', NODE_ENVIRONMENT, NODE_CONSTANT_PREFIX),
        ('req_wrap_queue', NODE_REQ_WRAP_QUEUE, NODE_CONSTANT_PREFIX),
        ('req_wrap', NODE_REQ_WRAP, NODE_CONSTANT_PREFIX),
        ('handle_wrap_queue', NODE_HANDLE_WRAP_QUEUE, NODE_CONSTANT_PREFIX),
        ('handle_wrap', NODE_HANDLE_WRAP, NODE_CONSTANT_PREFIX),
        ('base_object', NODE_BASE_OBJECT, NODE_CONSTANT_PREFIX),
    ]

    def __init__ (self, snapshot=None, node_prefix=NODE_CONSTANT_PREFIX):
        self.snapshot = None
        self.groups = {}
        for name, table, prefix in self.GROUPS:
            if prefix == NODE_CONSTANT_PREFIX:
                prefix = node_prefix
            group = ConstantsGroup(name, table, prefix)
            self.groups[name] = group
            setattr(self, name, group)
        if not snapshot is None:
            self.assign(snapshot)

    def assign (self, snapshot):
        # rebinding to the same snapshot keeps the loaded values
        if snapshot is self.snapshot:
            return self
        self.snapshot = snapshot
        for group in self.groups.values():
            group.assign(snapshot)
        return self

    def load_all (self):
        for group in self.groups.values():
            group.load()
        return self

    def missing (self):
        res = {}
        for name, group in self.groups.items():
            if group.is_loaded() and len(group.missing()) > 0:
                res[name] = group.missing()
        return res
