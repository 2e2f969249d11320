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

import json
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection
from elftools.elf.constants import SH_FLAGS

from v8heap.mem_range import Range, MemoryRangeSet, produce_ranges
from v8heap.v8_log import log, log_debug


def add_symbol(symbols, name, address, size):
    if not name in symbols:
        symbols[name] = []
    if not (address, size) in symbols[name]:
        symbols[name].append((address, size))
    return symbols

def get_sections_by_name_elffile(elf_file, load_base=0):
    sections_by_name = {}
    for section in elf_file.iter_sections():
        info = {}
        info['base'] = load_base
        info['start'] = load_base + section.header.sh_addr
        info['name'] = section.name.strip('\x00')
        info['flags'] = section.header.sh_flags
        info['type'] = section.header.sh_type
        info['section'] = section
        sections_by_name[info['name']] = info
    return sections_by_name

def load_elf_symbols(filename, load_base=0):
    '''
    Read the .symtab and .dynsym of an ELF file into {name: [(addr, size)]}.
    load_base is added to every symbol address (PIE executables).
    '''
    symbols = {}
    with open(filename, 'rb') as infile:
        elffile = ELFFile(infile)
        for section in elffile.iter_sections():
            if not isinstance(section, SymbolTableSection):
                continue
            for sym in section.iter_symbols():
                name = sym.name
                if len(name) == 0 or sym['st_value'] == 0:
                    continue
                add_symbol(symbols, name, load_base + sym['st_value'], sym['st_size'])
    log_debug("Loaded %d symbols from %s"%(len(symbols), filename))
    return symbols

def load_elf_image_ranges(filename, load_base=0, word_sz=8, little_endian=True):
    '''
    Ranges for the allocated, file backed sections of an ELF image.  Core
    dumps usually omit read-only data, so constants are read from here
    when the snapshot does not cover them.
    '''
    ranges = []
    with open(filename, 'rb') as infile:
        elffile = ELFFile(infile)
        sections_by_name = get_sections_by_name_elffile(elffile, load_base)
        for info in sections_by_name.values():
            if not info['flags'] & SH_FLAGS.SHF_ALLOC or \
               info['type'] == 'SHT_NOBITS':
                continue
            data = info['section'].data()
            if len(data) == 0:
                continue
            ranges.append(Range(info['start'], info['start']+len(data),
                                info['name'], data=data, word_sz=word_sz,
                                little_endian=little_endian))
    return ranges

def load_symbols_file(filename):
    '''
    JSON symbols file: {"name": [address, size], ...} or
    {"name": [[address, size], ...]} for duplicated names.
    '''
    symbols = {}
    with open(filename) as infile:
        data = json.load(infile)
    for name, value in data.items():
        if len(value) > 0 and isinstance(value[0], (list, tuple)):
            for address, size in value:
                add_symbol(symbols, name, int(address), int(size))
        else:
            add_symbol(symbols, name, int(value[0]), int(value[1]))
    return symbols


class StackFrame (object):
    def __init__ (self, pc, fp, symbol=None):
        self.pc = pc
        self.fp = fp
        self.symbol = symbol

    def has_symbol (self):
        return not self.symbol is None and len(self.symbol) > 0

    def __str__ (self):
        sym = self.symbol if self.has_symbol() else "???"
        return "frame pc=0x%016x fp=0x%016x %s"%(self.pc, self.fp, sym)


class Thread (object):
    def __init__ (self, tid, frames=None):
        self.tid = tid
        self.frames = frames if not frames is None else []

    def is_valid (self):
        return not self.tid is None


class Snapshot (object):
    '''
    Read-only view over a dumped process: memory ranges, the executable's
    symbol table and (optionally) the threads recovered by the host.
    '''
    def __init__ (self, ranges, symbols=None, threads=None, selected_thread=0,
                  image_ranges=None, word_sz=8, little_endian=True,
                  name=None):
        self.word_sz = word_sz
        self.little_endian = little_endian
        self.name = name
        if isinstance(ranges, MemoryRangeSet):
            self.ranges = ranges
        else:
            self.ranges = MemoryRangeSet(ranges, word_sz=word_sz)
        self.image_ranges = MemoryRangeSet(image_ranges or [], word_sz=word_sz)
        self.symbols = symbols if not symbols is None else {}
        self.threads = threads if not threads is None else []
        self.selected_thread = selected_thread

    def __str__ (self):
        return "Snapshot(%s, %d ranges, %d symbols)"%(self.name, len(self.ranges), len(self.symbols))

    def is_valid (self):
        return len(self.ranges) > 0

    def is_valid_addr (self, addr):
        return self.ranges.is_valid_addr(addr) or self.image_ranges.is_valid_addr(addr)

    def enumerate_memory_regions (self):
        return self.ranges.regions()

    def read_memory (self, addr, length):
        if addr is None or addr < 0 or length < 0:
            return None
        data = self.ranges.read(addr, length)
        if data is None:
            data = self.image_ranges.read(addr, length)
        return data

    def read_pointer (self, addr):
        if addr is None or addr < 0:
            return None
        val = self.ranges.read_word(addr)
        if val is None:
            val = self.image_ranges.read_word(addr)
        return val

    def find_symbols (self, name):
        return list(self.symbols.get(name, []))

    def get_selected_thread (self):
        if self.selected_thread is None or \
           self.selected_thread < 0 or \
           self.selected_thread >= len(self.threads):
            return None
        return self.threads[self.selected_thread]

    def stack_frames (self, thread=None):
        thread = thread if not thread is None else self.get_selected_thread()
        if thread is None:
            return []
        return list(thread.frames)

    @classmethod
    def from_dumps(cls, dumps_dir, elf_filename=None, symbols_filename=None,
                   load_base=0, threads=None, word_sz=8, little_endian=True):
        ranges = produce_ranges(dumps_dir, word_sz=word_sz, little_endian=little_endian)
        symbols = {}
        image_ranges = []
        if elf_filename:
            symbols.update(load_elf_symbols(elf_filename, load_base))
            image_ranges = load_elf_image_ranges(elf_filename, load_base,
                                                 word_sz, little_endian)
        if symbols_filename:
            for name, values in load_symbols_file(symbols_filename).items():
                for address, size in values:
                    add_symbol(symbols, name, address, size)
        log("Loaded %d ranges and %d symbols from %s"%(len(ranges), len(symbols), dumps_dir))
        return cls(ranges, symbols=symbols, threads=threads,
                   image_ranges=image_ranges, word_sz=word_sz,
                   little_endian=little_endian, name=dumps_dir)
