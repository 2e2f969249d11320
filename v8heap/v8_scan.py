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
from tabulate import tabulate

from v8heap.v8_log import log, log_debug
from v8heap.v8_values import is_heap_object, untag

SCAN_CHECK_EVERY = 4096
# negative classifications are dropped wholesale past this many entries
MAX_NEGATIVE_CACHE = 1 << 16

MapCacheEntry = namedtuple('MapCacheEntry', ['type_name', 'is_histogram', 'map_info'])
ScanResult = namedtuple('ScanResult', ['records', 'found_count', 'cancelled', 'words_visited'])


def align_pad(a, align):
    return (align - (a % align)) % align

def align_addr(a, align):
    return a + align_pad(a, align)


class TypeRecord (object):
    def __init__ (self, type_name):
        self.type_name = type_name
        self.instance_count = 0
        self.total_size = 0
        self.instances = set()

    def __str__ (self):
        return "%s: %d instances, %d bytes"%(self.type_name, self.instance_count, self.total_size)

    def add_instance (self, addr, size):
        if addr in self.instances:
            return False
        self.instances.add(addr)
        self.instance_count += 1
        self.total_size += size
        return True

    def get_instances (self):
        return sorted(self.instances)

    def sort_key (self):
        return (self.instance_count, self.total_size, self.type_name)


class FindJSObjectsVisitor (object):
    '''
    Word visitor for MemoryRangeSet.visit_words.  Each word is taken as a
    candidate Map pointer for an object starting at the visited address;
    when the Map decodes, the object is added to its type's TypeRecord and
    the traversal skips over the object's extent.
    '''
    def __init__ (self, snapshot, decoder, mapstoinstances=None):
        self.snapshot = snapshot
        self.decoder = decoder
        self.word_sz = snapshot.word_sz
        self.mapstoinstances = mapstoinstances if not mapstoinstances is None else {}
        self.found_count = 0
        self.map_cache = {}
        self.negative_cache = set()

    def __call__ (self, addr, word, available):
        return self.visit(addr, word, available)

    def classify_map (self, map_addr):
        entry = self.map_cache.get(map_addr, None)
        if not entry is None:
            return entry
        if map_addr in self.negative_cache:
            return None

        map_info = self.decoder.decode_map(map_addr)
        if map_info is None:
            if len(self.negative_cache) >= MAX_NEGATIVE_CACHE:
                self.negative_cache = set()
            self.negative_cache.add(map_addr)
            return None
        entry = MapCacheEntry(map_info.type_name, map_info.is_histogram, map_info)
        self.map_cache[map_addr] = entry
        return entry

    def visit (self, addr, word, available):
        word_sz = self.word_sz
        if not is_heap_object(word):
            return word_sz

        entry = self.classify_map(untag(word))
        if entry is None or not entry.is_histogram:
            return word_sz

        size = self.decoder.object_size(addr, entry.map_info)
        if size is None or size <= 0:
            log_debug("Skipping %s candidate at 0x%08x, unreadable size"%(entry.type_name, addr))
            return word_sz

        record = self.mapstoinstances.get(entry.type_name, None)
        if record is None:
            record = TypeRecord(entry.type_name)
            self.mapstoinstances[entry.type_name] = record
        if record.add_instance(addr, size):
            self.found_count += 1
        return align_addr(size, word_sz)


def scan_heap_for_objects(snapshot, decoder, ranges=None, should_stop=None,
                          check_every=SCAN_CHECK_EVERY, mapstoinstances=None):
    '''
    Build a type census over ranges (default: every range of the snapshot).
    A cancelled scan still returns the records gathered so far.
    '''
    ranges = ranges if not ranges is None else snapshot.ranges
    visitor = FindJSObjectsVisitor(snapshot, decoder, mapstoinstances)
    log("Scanning %d ranges (0x%x bytes) for objects"%(len(ranges), ranges.total_size()))
    words_visited, cancelled = ranges.visit_words(visitor, should_stop=should_stop,
                                                  check_every=check_every)
    log("Found %d objects of %d types in %d words"%(visitor.found_count,
                                                   len(visitor.mapstoinstances),
                                                   words_visited))
    return ScanResult(visitor.mapstoinstances, visitor.found_count,
                      cancelled, words_visited)

def sorted_type_records(records):
    return sorted(records.values(), key=lambda r: r.sort_key())

def get_census_table(records, tablefmt='simple'):
    headers = ["Instances", "Total Size", "Name"]
    table = []
    for record in sorted_type_records(records):
        table.append([record.instance_count, record.total_size, record.type_name])
    return tabulate(table, headers=headers, tablefmt=tablefmt)

def get_instances(records, type_name):
    record = records.get(type_name, None)
    if record is None:
        return []
    return record.get_instances()
