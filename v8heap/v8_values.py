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

# tagging layout for 64 bit builds without pointer compression
SMI_TAG = 0
SMI_TAG_MASK = 1
HEAP_OBJECT_TAG = 1
HEAP_OBJECT_TAG_MASK = 3
SMI_SHIFT = 32

MapInfo = namedtuple('MapInfo', ['type_name', 'instance_size', 'is_histogram'])


def is_smi(value):
    return value is not None and (value & SMI_TAG_MASK) == SMI_TAG

def is_heap_object(value):
    return value is not None and (value & HEAP_OBJECT_TAG_MASK) == HEAP_OBJECT_TAG

def untag(value):
    return value - HEAP_OBJECT_TAG

def tag(addr):
    return addr + HEAP_OBJECT_TAG

def smi_untag(value, shift=SMI_SHIFT, word_sz=8):
    value = value & ((1 << (word_sz*8)) - 1)
    if value & (1 << (word_sz*8 - 1)):
        value -= 1 << (word_sz*8)
    return value >> shift


class ValueDecoder (object):
    '''
    Interface to the runtime's tagged value layout.  The heap scanner, the
    reference scanners and the environment strategies only talk to the
    snapshot through these methods; a concrete decoder knows the Map,
    JSObject, string, context and frame layouts of one V8 build.

    Every method returns None when the value can not be decoded.  Heap
    object addresses (decode_map, object_size, is_string, string_value,
    object_fields) are untagged; functions, contexts and arrays are passed
    and returned as the tagged words read from memory.
    '''
    def __init__ (self, snapshot=None):
        self.snapshot = snapshot

    def assign (self, snapshot):
        self.snapshot = snapshot

    def decode_map (self, addr):
        '''
        Decode a Map at addr and return MapInfo, or None when addr does not
        hold a Map.  is_histogram marks types that belong in the census.
        '''
        return None

    def object_size (self, addr, map_info):
        '''
        Byte extent of the object at addr whose Map is map_info.  Fixed size
        layouts use the map's instance size, variable size layouts need the
        length read from the object.
        '''
        if map_info is None:
            return None
        return map_info.instance_size

    def is_string (self, addr):
        return None

    def string_value (self, addr):
        return None

    def object_fields (self, addr):
        '''
        [(locator, value)]: str locators for named properties, int locators
        for elements.  Values are raw tagged words.
        '''
        return None

    def frame_function (self, fp):
        return None

    def function_context (self, fn):
        return None

    def context_native (self, ctx):
        return None

    def context_previous (self, ctx):
        return None

    def fixed_array_get (self, arr, idx):
        return None

    def smi_value (self, value):
        if not is_smi(value):
            return None
        word_sz = getattr(self.snapshot, 'word_sz', 8)
        return smi_untag(value, word_sz=word_sz)
