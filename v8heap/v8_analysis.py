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
from v8heap.v8_log import log, log_debug
from v8heap.v8_constants import Constants, NODE_CONSTANT_PREFIX
from v8heap.v8_scan import scan_heap_for_objects, sorted_type_records, \
                           get_census_table, get_instances, SCAN_CHECK_EVERY
from v8heap.v8_refs import ReferenceGraphIndex
from v8heap.node_env import EnvironmentResolver, MAX_CONTEXT_DEPTH
from v8heap.node_queue import Environment, MAX_QUEUE_LENGTH


class V8Analysis (object):
    '''
    One analysis session over one snapshot.  The session owns the constants
    catalog, the last census and the reference indices built on it;
    assign() rebinds the session to another snapshot and drops all of them.
    '''
    def log(self, msg):
        log(msg)

    def __init__(self, snapshot, decoder, constant_prefix=NODE_CONSTANT_PREFIX,
                 max_queue_length=MAX_QUEUE_LENGTH,
                 max_context_depth=MAX_CONTEXT_DEPTH,
                 check_every=SCAN_CHECK_EVERY):
        self.decoder = decoder
        self.constant_prefix = constant_prefix
        self.max_queue_length = max_queue_length
        self.max_context_depth = max_context_depth
        self.check_every = check_every
        self.snapshot = None
        self.assign(snapshot)

    def assign(self, snapshot):
        self.snapshot = snapshot
        self.constants = Constants(snapshot, node_prefix=self.constant_prefix)
        if hasattr(self.decoder, 'assign'):
            self.decoder.assign(snapshot)
        self.scan_result = None
        self.ref_index = None
        self.environment = None

    def check_snapshot(self):
        if self.snapshot is None:
            return Error.failure("No snapshot attached")
        if not self.snapshot.is_valid():
            return Error.failure("Snapshot has no memory ranges")
        return Error.ok()

    def check_scan(self):
        err = self.check_snapshot()
        if err.fail():
            return err
        if self.scan_result is None:
            return Error.failure("No heap scan results, scan the heap first")
        return Error.ok()

    # census
    def scan_heap_for_objects(self, should_stop=None, ranges=None):
        err = self.check_snapshot()
        if err.fail():
            return None, err
        result = scan_heap_for_objects(self.snapshot, self.decoder, ranges=ranges,
                                       should_stop=should_stop,
                                       check_every=self.check_every)
        if result.cancelled:
            self.log("Heap scan cancelled, census is partial")
        self.scan_result = result
        self.ref_index = ReferenceGraphIndex(result.records, self.decoder)
        return result, Error.ok()

    def get_type_records(self):
        err = self.check_scan()
        if err.fail():
            return None, err
        return sorted_type_records(self.scan_result.records), Error.ok()

    def get_census_table(self, tablefmt='simple'):
        err = self.check_scan()
        if err.fail():
            return None, err
        return get_census_table(self.scan_result.records, tablefmt), Error.ok()

    def find_instances(self, type_name):
        err = self.check_scan()
        if err.fail():
            return None, err
        instances = get_instances(self.scan_result.records, type_name)
        if len(instances) == 0:
            log_debug("No objects found with type name %s"%type_name)
        return instances, Error.ok()

    # references
    def find_references_by_value(self, addr, should_stop=None):
        err = self.check_scan()
        if err.fail():
            return None, err
        return self.ref_index.find_references_by_value(addr, should_stop), Error.ok()

    def find_references_by_property(self, name, should_stop=None):
        err = self.check_scan()
        if err.fail():
            return None, err
        return self.ref_index.find_references_by_property(name, should_stop), Error.ok()

    def find_references_by_string(self, value, should_stop=None):
        err = self.check_scan()
        if err.fail():
            return None, err
        return self.ref_index.find_references_by_string(value, should_stop), Error.ok()

    def export_references_to_redis(self, conn):
        err = self.check_scan()
        if err.fail():
            return None, err
        if conn is None or conn.redis_con is None:
            return None, Error.failure("No redis connection")
        cnt = 0
        for index in (self.ref_index.by_value, self.ref_index.by_property,
                      self.ref_index.by_string):
            for record in index.values():
                cnt += conn.add_reference_record(record)
        self.log("Exported %d references to redis"%cnt)
        return cnt, Error.ok()

    # node environment
    def current_environment(self):
        if not self.environment is None:
            return self.environment, Error.ok()
        err = self.check_snapshot()
        if err.fail():
            return None, err
        resolver = EnvironmentResolver(self.snapshot, self.decoder, self.constants,
                                       max_context_depth=self.max_context_depth)
        addr, err = resolver.resolve()
        if addr == -1:
            return None, err
        self.environment = Environment(self.snapshot, self.constants, addr,
                                       self.max_queue_length)
        return self.environment, Error.ok()

    def _active_objects(self, queue_name):
        env, err = self.current_environment()
        if err.fail():
            return None, err
        queue, err = getattr(env, queue_name)()
        if err.fail():
            return None, err
        objs = []
        for wrap in queue:
            if wrap is None:
                continue
            addr = wrap.v8_object_addr()
            if addr == -1:
                log_debug("Failed to load the object of %s"%str(wrap))
                continue
            objs.append(addr)
        return objs, Error.ok()

    def get_active_handles(self):
        return self._active_objects('handle_wrap_queue')

    def get_active_requests(self):
        return self._active_objects('req_wrap_queue')
