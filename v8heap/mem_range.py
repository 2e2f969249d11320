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

import os, copy, struct, bisect
import numpy as np

from v8heap.v8_errors import V8HeapException
from v8heap.v8_log import log, log_debug

WORD_FMTS = {4:'I', 8:'Q'}
NP_WORD_TYPES = {4:'u4', 8:'u8'}
FILLER_VALUES = set([0x00, 0x11, 0xff])


def parse_int(value):
    value = value.strip()
    if value.lower().startswith("0x"):
        return int(value, 16)
    return int(value, 16) if any(c in "abcdefABCDEF" for c in value) \
                          else int(value, 10)

def produce_ranges(dumps_dir, word_sz=8, little_endian=True):
    '''
    Load every <start>-<end>.bin file in dumps_dir as a Range.  The bounds
    in the file names are hex addresses.
    '''
    ranges = [i for i in os.listdir(dumps_dir) if i.find(".bin") > -1 and i.find("-") > -1]
    ranges_values = []
    for r in ranges:
        range_ = r.split(".bin")[0]
        try:
            start = int(range_.split('-')[0], 16)
            end = int(range_.split('-')[1], 16)
        except ValueError:
            log_debug("Skipping dump file with unexpected name: %s"%r)
            continue
        d = Range (start, end, r, dumps_dir, load_data=True,
                   word_sz=word_sz, little_endian=little_endian)
        ranges_values.append(d)
    return ranges_values

def ranges_from_regions(regions, reader, word_sz=8, little_endian=True):
    '''
    Build ranges from an externally supplied [(start, length)] list.
    reader(addr, length) returns the bytes or None when the region can not
    be read; unreadable regions are kept without data and skipped by scans.
    '''
    ranges_values = []
    for start, length in regions:
        if length <= 0:
            continue
        data = reader(start, length) if not reader is None else None
        if not data is None and len(data) != length:
            log_debug("Region 0x%016x read 0x%x of 0x%x bytes"%(start, len(data), length))
        r = Range(start, start+length, "0x%016x-0x%016x.bin"%(start, start+length),
                  data=data, word_sz=word_sz, little_endian=little_endian)
        ranges_values.append(r)
    return ranges_values

def read_segments_file(segments_filename):
    '''
    Parse a segments file: one "start length" pair per line, hex or decimal.
    Blank lines and lines starting with '#' are ignored.
    '''
    regions = []
    with open(segments_filename) as infile:
        for line in infile:
            line = line.strip()
            if len(line) == 0 or line.startswith('#'):
                continue
            p = line.split()
            if len(p) < 2:
                log_debug("Bad segments line: %s"%line)
                continue
            try:
                regions.append((parse_int(p[0]), parse_int(p[1])))
            except ValueError:
                log_debug("Bad segments line: %s"%line)
    return regions

def ranges_from_segments_file(segments_filename, reader, word_sz=8, little_endian=True):
    regions = read_segments_file(segments_filename)
    return ranges_from_regions(regions, reader, word_sz=word_sz,
                               little_endian=little_endian)


class Range (object):
    def __init__ (self, start, end, filename=None,
                    base_dir = None, load_data=False,
                    data = None, word_sz = 8, little_endian=True):
        if not word_sz in WORD_FMTS:
            raise V8HeapException("Unsupported word size: %d"%word_sz)
        self.word_sz = word_sz
        self.little_endian = little_endian
        self.start = start
        self.end = end
        self.filename = filename
        self.base_dir = base_dir
        self.fdata = None
        self.fsize = 0
        if load_data:
            with open(os.path.join(base_dir, filename), "rb") as infile:
                self.fdata = infile.read()
        elif not data is None:
            self.fdata = bytes(data)
        if self.fdata:
            self.fsize = len(self.fdata)
            # a short dump only covers the bytes we actually have
            self.end = self.start + self.fsize

    def length(self):
        return self.end - self.start

    def is_readable(self):
        return not self.fdata is None and self.fsize > 0

    def in_range (self, value):
        return self.start <= value and value < self.end

    def __str__ (self):
        return "0x%08x-0x%08x"%(self.start, self.end)

    def __repr__ (self):
        return "Range(%s)"%str(self)

    def byte_order(self):
        return "<" if self.little_endian else ">"

    def read_at_addr(self, addr, size):
        if not self.is_readable() or not self.in_range(addr):
            return None
        pos = addr - self.start
        if pos + size > self.fsize:
            return None
        return self.fdata[pos:pos+size]

    def _unpack_at_addr(self, addr, size, code):
        result = self.read_at_addr(addr, size)
        if result is None or len(result) != size:
            return None
        return struct.unpack(self.byte_order()+code, result)[0]

    def read_dword_at_addr(self, addr):
        return self._unpack_at_addr(addr, 4, 'I')

    def read_qword_at_addr(self, addr):
        return self._unpack_at_addr(addr, 8, 'Q')

    def read_word_at_addr(self, addr):
        return self._unpack_at_addr(addr, self.word_sz, WORD_FMTS[self.word_sz])

    def first_aligned_addr(self):
        pad = (self.word_sz - (self.start % self.word_sz)) % self.word_sz
        return self.start + pad

    def read_all_as_words (self):
        '''
        Every aligned word of the range as a numpy array, starting at
        first_aligned_addr().
        '''
        if not self.is_readable():
            return np.zeros(0, dtype=self.byte_order()+NP_WORD_TYPES[self.word_sz])
        off = self.first_aligned_addr() - self.start
        cnt = max(0, (self.fsize - off)//self.word_sz)
        dtype = np.dtype(self.byte_order()+NP_WORD_TYPES[self.word_sz])
        # too short to hold one aligned word
        if cnt == 0:
            return np.zeros(0, dtype=dtype)
        return np.frombuffer(self.fdata, dtype=dtype, count=cnt, offset=off)

    def clip_front(self, new_start):
        '''
        Drop the bytes below new_start (used to remove overlap with the
        previous range).
        '''
        if new_start <= self.start:
            return self
        cut = new_start - self.start
        if self.is_readable():
            self.fdata = self.fdata[cut:]
            self.fsize = len(self.fdata)
        self.start = new_start
        if self.end < self.start:
            self.end = self.start
        return self

    def filter_chunks_hack(self, data, filter_values=FILLER_VALUES, threshhold=.95 ):
        if len(data) == 0:
            return False
        counts = np.bincount(np.frombuffer(data, dtype=np.uint8), minlength=256)
        tot = float(sum([counts[i] for i in filter_values]))
        return (tot/len(data)) >= threshhold

    def ltrim_range (self, chunk_sz = 4096):
        '''
        Drop leading chunks that are (almost) all filler bytes.  Returns the
        number of bytes trimmed.
        '''
        if not self.is_readable():
            return 0
        pos = 0
        while pos < self.fsize and \
              self.filter_chunks_hack(self.fdata[pos:pos+chunk_sz]):
            pos += chunk_sz

        pos = min(pos, self.fsize)
        if pos > 0:
            self.fsize = self.fsize-pos
            self.start = self.start+pos
            self.fdata = self.fdata[pos:]
        return pos


class MemoryRangeSet (object):
    '''
    Sorted, non-overlapping set of memory ranges.  Overlapping input is
    clipped so every address belongs to at most one range, and empty
    ranges are dropped.  The set works on copies, the caller's
    ranges are left untouched.
    '''
    def __init__ (self, ranges, word_sz=8):
        if not word_sz in WORD_FMTS:
            raise V8HeapException("Unsupported word size: %d"%word_sz)
        self.word_sz = word_sz
        self.ranges = []
        self.cached_range = None
        last_end = None
        for r in sorted(ranges, key=lambda r: (r.start, -r.length())):
            r = copy.copy(r)
            if not last_end is None and r.start < last_end:
                if r.end <= last_end:
                    log_debug("Dropping range %s contained in a previous range"%str(r))
                    continue
                log_debug("Clipping range %s to start at 0x%08x"%(str(r), last_end))
                r.clip_front(last_end)
            if r.length() <= 0:
                continue
            r.word_sz = word_sz
            self.ranges.append(r)
            last_end = r.end
        self.starts = [r.start for r in self.ranges]

    def __iter__ (self):
        return iter(self.ranges)

    def __len__ (self):
        return len(self.ranges)

    def __getitem__ (self, idx):
        return self.ranges[idx]

    def total_size (self):
        return sum([r.length() for r in self.ranges])

    def find_range (self, vaddr):
        if vaddr is None or not isinstance(vaddr, int):
            return None

        t = self.cached_range
        if not t is None and t.in_range(vaddr):
            return t

        pos = bisect.bisect_right(self.starts, vaddr) - 1
        if pos < 0:
            return None
        r = self.ranges[pos]
        if r.in_range(vaddr):
            self.cached_range = r
            return r
        return None

    def is_valid_addr(self, addr):
        r = self.find_range(addr)
        return not r is None and r.is_readable()

    def read (self, addr, size):
        r = self.find_range(addr)
        if r is None:
            return None
        return r.read_at_addr(addr, size)

    def read_word (self, addr):
        r = self.find_range(addr)
        if r is None:
            return None
        return r.read_word_at_addr(addr)

    def regions (self):
        return [(r.start, r.length()) for r in self.ranges]

    def visit_words (self, visitor, should_stop=None, check_every=4096):
        '''
        Call visitor(address, word, available) for each aligned word in
        ascending address order.  The visitor returns how many bytes to
        advance; the advance is rounded up to a whole number of words and is
        never less than one word.  should_stop() is polled every check_every
        words.  Returns (words_visited, cancelled).
        '''
        word_sz = self.word_sz
        visited = 0
        check_every = max(1, check_every)
        for r in self.ranges:
            if not r.is_readable():
                log_debug("Skipping unreadable range %s"%str(r))
                continue
            words = r.read_all_as_words()
            first = r.first_aligned_addr()
            end = r.start + r.fsize
            addr = first
            nwords = len(words)
            while True:
                idx = (addr - first)//word_sz
                if idx >= nwords:
                    break
                incr = visitor(addr, int(words[idx]), end - addr)
                if incr is None or incr < word_sz:
                    incr = word_sz
                elif incr % word_sz != 0:
                    incr += word_sz - (incr % word_sz)
                addr += incr
                visited += 1
                if not should_stop is None and visited % check_every == 0 \
                   and should_stop():
                    log("Scan cancelled at 0x%08x after %d words"%(addr, visited))
                    return visited, True
        return visited, False
