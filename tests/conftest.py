import struct
import pytest

from v8heap.mem_range import Range
from v8heap.v8_snapshot import Snapshot
from v8heap.v8_values import ValueDecoder, MapInfo, tag

CONSTANTS_BASE = 0x7f0000000000


class MemoryImage(object):
    """Zero filled little endian memory block with word helpers."""

    def __init__(self, start, size):
        self.start = start
        self.data = bytearray(size)

    def put_word(self, addr, value):
        struct.pack_into('<Q', self.data, addr - self.start, value & 0xffffffffffffffff)

    def put_words(self, addr, values):
        for i, value in enumerate(values):
            self.put_word(addr + 8*i, value)

    def put_bytes(self, addr, raw):
        pos = addr - self.start
        self.data[pos:pos+len(raw)] = raw

    def to_range(self):
        return Range(self.start, self.start + len(self.data), data=bytes(self.data))


class RecordingSnapshot(Snapshot):
    """Snapshot that remembers every pointer read."""

    def __init__(self, *args, **kwargs):
        Snapshot.__init__(self, *args, **kwargs)
        self.pointer_reads = []

    def read_pointer(self, addr):
        self.pointer_reads.append(addr)
        return Snapshot.read_pointer(self, addr)


def constants_range(constants, base=CONSTANTS_BASE):
    """Lay out {symbol: value} as 8 byte globals; returns (Range, symbols)."""
    image = MemoryImage(base, max(8, 8*len(constants)))
    symbols = {}
    for i, name in enumerate(sorted(constants)):
        addr = base + 8*i
        image.put_word(addr, constants[name])
        symbols[name] = [(addr, 8)]
    return image.to_range(), symbols


def make_snapshot(images=(), constants=None, threads=None, cls=Snapshot):
    ranges = [i.to_range() for i in images]
    symbols = {}
    if constants:
        r, symbols = constants_range(constants)
        ranges.append(r)
    return cls(ranges, symbols=symbols, threads=threads)


class SyntheticDecoder(ValueDecoder):
    """Decoder driven by plain dicts instead of a real V8 layout."""

    def __init__(self, maps=None, sizes=None, strings=None, fields=None,
                 functions=None, contexts=None, natives=None, previous=None,
                 arrays=None):
        ValueDecoder.__init__(self)
        self.maps = maps or {}
        self.sizes = sizes or {}
        self.strings = strings or {}
        self.fields = fields or {}
        self.functions = functions or {}
        self.contexts = contexts or {}
        self.natives = natives or {}
        self.previous = previous or {}
        self.arrays = arrays or {}
        self.decode_map_calls = 0
        self.object_fields_calls = 0

    def decode_map(self, addr):
        self.decode_map_calls += 1
        return self.maps.get(addr)

    def object_size(self, addr, map_info):
        if addr in self.sizes:
            return self.sizes[addr]
        return ValueDecoder.object_size(self, addr, map_info)

    def is_string(self, addr):
        return addr in self.strings

    def string_value(self, addr):
        return self.strings.get(addr)

    def object_fields(self, addr):
        self.object_fields_calls += 1
        return self.fields.get(addr)

    def frame_function(self, fp):
        return self.functions.get(fp)

    def function_context(self, fn):
        return self.contexts.get(fn)

    def context_native(self, ctx):
        return self.natives.get(ctx)

    def context_previous(self, ctx):
        return self.previous.get(ctx)

    def fixed_array_get(self, arr, idx):
        return self.arrays.get((arr, idx))


OBJECT_MAP = 0x200000
STRING_MAP = 0x200100
META_MAP = 0x200200


@pytest.fixture
def census_maps():
    return {
        OBJECT_MAP: MapInfo('Object', 32, True),
        STRING_MAP: MapInfo('String', 24, True),
        META_MAP: MapInfo('Map', 80, False),
    }


@pytest.fixture
def heap_image():
    """
    Three 32 byte Objects at 0x1000, 0x1030 and 0x1060 with non-Map words
    between them.
    """
    image = MemoryImage(0x1000, 0x80)
    image.put_words(0x1000, [tag(OBJECT_MAP), 0, 0, 0])
    image.put_words(0x1020, [0x5555, 0x2468])
    image.put_words(0x1030, [tag(OBJECT_MAP), 0, 0, 0])
    image.put_words(0x1050, [0x9999, 0x1111])
    image.put_words(0x1060, [tag(OBJECT_MAP), 0, 0, 0])
    return image
