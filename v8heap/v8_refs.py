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

from v8heap.v8_log import log, log_debug
from v8heap.v8_values import is_heap_object, untag

BY_INDEX = 'by_index'
BY_ATTRIBUTE = 'by_attribute'
STRING_BY_INDEX = 'string_by_index'
STRING_BY_ATTRIBUTE = 'string_by_attribute'

# locator is an int for elements, a str for named properties and None when
# a string instance matched by its own contents
ReferenceInfo = namedtuple('ReferenceInfo', ['address', 'type_name', 'locator',
                                             'referred_address', 'variant',
                                             'string_value'])


def locator_variant(locator, is_string=False):
    if isinstance(locator, int):
        return STRING_BY_INDEX if is_string else BY_INDEX
    return STRING_BY_ATTRIBUTE if is_string else BY_ATTRIBUTE

def format_reference(info):
    if info.variant == BY_INDEX:
        return "0x%016x : %s[%d]=0x%016x"%(info.address, info.type_name,
                                           info.locator, info.referred_address)
    elif info.variant == BY_ATTRIBUTE:
        return "0x%016x : %s.%s=0x%016x"%(info.address, info.type_name,
                                          info.locator, info.referred_address)
    elif info.variant == STRING_BY_INDEX:
        return "0x%016x : %s[%d]='%s'"%(info.address, info.type_name,
                                        info.locator, info.string_value)
    if info.locator is None:
        return "0x%016x : %s='%s'"%(info.address, info.type_name, info.string_value)
    return "0x%016x : %s.%s='%s'"%(info.address, info.type_name,
                                   info.locator, info.string_value)


class ReferenceRecord (object):
    def __init__ (self):
        self.references = set()
        self.cancelled = False

    def __len__ (self):
        return len(self.references)

    def __iter__ (self):
        return iter(self.get_references())

    def add_reference (self, address, type_name, locator, referred_address,
                       string_value=None):
        variant = locator_variant(locator, not string_value is None)
        info = ReferenceInfo(address, type_name, locator, referred_address,
                             variant, string_value)
        self.references.add(info)
        return info

    def get_references (self):
        return sorted(self.references, key=lambda i: (i.address, str(i.locator)))

    def format_references (self):
        return [format_reference(i) for i in self.get_references()]


class ObjectScanner (object):
    def __init__ (self, search_value):
        self.search_value = search_value

    def scan_for_refs (self, record, addr, type_name, decoder):
        if decoder.is_string(addr):
            return self.scan_string_for_refs(record, addr, type_name, decoder)
        return self.scan_object_for_refs(record, addr, type_name, decoder)

    def scan_object_for_refs (self, record, addr, type_name, decoder):
        return 0

    def scan_string_for_refs (self, record, addr, type_name, decoder):
        return 0


class ReferenceScanner (ObjectScanner):
    '''
    Fields whose value points at search_value (an untagged address).
    '''
    def scan_object_for_refs (self, record, addr, type_name, decoder):
        fields = decoder.object_fields(addr)
        if fields is None:
            return 0
        cnt = 0
        for locator, value in fields:
            if not is_heap_object(value) or untag(value) != self.search_value:
                continue
            record.add_reference(addr, type_name, locator, self.search_value)
            cnt += 1
        return cnt

    # cons and sliced strings point at their parts
    scan_string_for_refs = scan_object_for_refs


class PropertyScanner (ObjectScanner):
    '''
    Fields named search_value, whatever they hold.  Strings have no
    properties and are never matched.
    '''
    def scan_object_for_refs (self, record, addr, type_name, decoder):
        fields = decoder.object_fields(addr)
        if fields is None:
            return 0
        cnt = 0
        for locator, value in fields:
            if str(locator) != self.search_value:
                continue
            referred = untag(value) if is_heap_object(value) else value
            record.add_reference(addr, type_name, locator, referred)
            cnt += 1
        return cnt


class StringScanner (ObjectScanner):
    '''
    Fields holding a string equal to search_value, and string instances
    whose own contents equal it.
    '''
    def scan_object_for_refs (self, record, addr, type_name, decoder):
        fields = decoder.object_fields(addr)
        if fields is None:
            return 0
        cnt = 0
        for locator, value in fields:
            if not is_heap_object(value):
                continue
            child = untag(value)
            if not decoder.is_string(child):
                continue
            s = decoder.string_value(child)
            if s is None or s != self.search_value:
                continue
            record.add_reference(addr, type_name, locator, child, s)
            cnt += 1
        return cnt

    def scan_string_for_refs (self, record, addr, type_name, decoder):
        s = decoder.string_value(addr)
        if s is None or s != self.search_value:
            return 0
        record.add_reference(addr, type_name, None, addr, s)
        return 1


def scan_for_references(scanner, records, decoder, type_name=None, should_stop=None):
    '''
    Apply scanner to every instance of type_name, or of the whole census
    when type_name is None.  Returns a ReferenceRecord.
    '''
    record = ReferenceRecord()
    if type_name is None:
        type_records = list(records.values())
    elif type_name in records:
        type_records = [records[type_name]]
    else:
        type_records = []

    for type_record in type_records:
        for addr in type_record.get_instances():
            if not should_stop is None and should_stop():
                log("Reference scan cancelled at 0x%08x"%addr)
                record.cancelled = True
                return record
            scanner.scan_for_refs(record, addr, type_record.type_name, decoder)
    log_debug("Reference scan for %r found %d references"%(scanner.search_value, len(record)))
    return record


class ReferenceGraphIndex (object):
    '''
    Reference queries over one census.  Results are kept by target value,
    property name and string value so repeated queries do not rescan.
    '''
    def __init__ (self, records, decoder):
        self.records = records
        self.decoder = decoder
        self.by_value = {}
        self.by_property = {}
        self.by_string = {}

    def invalidate (self):
        self.by_value = {}
        self.by_property = {}
        self.by_string = {}

    def _find (self, index, key, scanner, should_stop=None):
        if key in index:
            return index[key]
        record = scan_for_references(scanner, self.records, self.decoder,
                                     should_stop=should_stop)
        # a cancelled scan is incomplete, keep it out of the index
        if not record.cancelled:
            index[key] = record
        return record

    def find_references_by_value (self, addr, should_stop=None):
        return self._find(self.by_value, addr, ReferenceScanner(addr), should_stop)

    def find_references_by_property (self, name, should_stop=None):
        return self._find(self.by_property, name, PropertyScanner(name), should_stop)

    def find_references_by_string (self, value, should_stop=None):
        return self._find(self.by_string, value, StringScanner(value), should_stop)

    def get_references_by_value (self, addr):
        return self.by_value.get(addr, None)

    def get_references_by_property (self, name):
        return self.by_property.get(name, None)

    def get_references_by_string (self, value):
        return self.by_string.get(value, None)
