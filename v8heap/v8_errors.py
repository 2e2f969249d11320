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


class V8HeapException(Exception):
    '''
    Raised for misuse of the API (bad word size, bad arguments), never
    for missing symbols or unreadable memory.
    '''
    pass


class Error(object):
    '''
    Explicit success/failure signal returned next to a result.  Callers
    check fail() before consuming the value paired with it.
    '''
    __slots__ = ('_failed', '_message')

    def __init__(self, failed=False, message=""):
        self._failed = failed
        self._message = message

    @classmethod
    def ok(cls):
        return cls(False, "")

    @classmethod
    def failure(cls, message):
        return cls(True, message)

    @property
    def message(self):
        return self._message

    def fail(self):
        return self._failed

    def success(self):
        return not self._failed

    def __bool__(self):
        # truthy when the operation succeeded
        return not self._failed

    def __eq__(self, other):
        if not isinstance(other, Error):
            return NotImplemented
        return self._failed == other._failed and \
               self._message == other._message

    def __hash__(self):
        return hash((self._failed, self._message))

    def __repr__(self):
        if self._failed:
            return "Error.failure(%r)"%self._message
        return "Error.ok()"

    __str__ = __repr__
