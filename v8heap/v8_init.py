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

from v8heap.v8_log import log, time_str
from v8heap.v8_snapshot import Snapshot
from v8heap.v8_analysis import V8Analysis


def init_v8a_only(dumps_dir, symbols_file=None, decoder=None, elf_file=None,
                  load_base=0, threads=None, word_sz=8, little_endian=True,
                  **kargs):
    snapshot = Snapshot.from_dumps(dumps_dir, elf_filename=elf_file,
                                   symbols_filename=symbols_file,
                                   load_base=load_base, threads=threads,
                                   word_sz=word_sz, little_endian=little_endian)
    return V8Analysis(snapshot, decoder, **kargs)

def init_v8a_environment(dumps_dir, symbols_file=None, decoder=None, elf_file=None,
                         load_base=0, threads=None, word_sz=8, little_endian=True,
                         should_stop=None, **kargs):
    start_time = time_str()
    v8a = init_v8a_only(dumps_dir, symbols_file, decoder, elf_file, load_base,
                        threads, word_sz, little_endian, **kargs)
    log("Loading constants")
    v8a.constants.load_all()
    for group, names in v8a.constants.missing().items():
        log("Missing %s constants: %s"%(group, ", ".join(names)))

    log("Scanning heap for objects")
    start_time2 = time_str()
    result, err = v8a.scan_heap_for_objects(should_stop=should_stop)
    if err.fail():
        log("Heap scan failed: %s"%err.message)
        return v8a
    log("[%s] Heap Scan started analysis"%(start_time2))
    log("[%s] Heap Scan completed analysis"%(time_str()))

    log("Locating the current environment")
    env, err = v8a.current_environment()
    if err.fail():
        log("No environment: %s"%err.message)
    else:
        log("Current environment at 0x%016x"%env.raw)
    log("[%s] Started analysis"%(start_time))
    log("[%s] Completed analysis"%(time_str()))
    return v8a
