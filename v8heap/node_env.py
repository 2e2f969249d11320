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
from v8heap.v8_log import log_debug

MAX_CONTEXT_DEPTH = 256


def environment_from_context(decoder, constants, context):
    '''
    Read node's Environment pointer out of a native context: the context's
    embedder data array, then node's slot in that array.  Returns -1 when
    any step fails.
    '''
    ctx_idx = constants.context.get('kEmbedderDataIndex')
    env_idx = constants.env.get('kEnvContextEmbedderDataIndex')
    if ctx_idx < 0 or env_idx < 0:
        log_debug("Embedder data indices are not available")
        return -1
    embed = decoder.fixed_array_get(context, ctx_idx)
    if embed is None:
        return -1
    encoded = decoder.fixed_array_get(embed, env_idx)
    if encoded is None:
        return -1
    return encoded


class EnvironmentStrategy (object):
    name = "base"

    def __init__ (self, snapshot, decoder, constants):
        self.snapshot = snapshot
        self.decoder = decoder
        self.constants = constants

    def find_environment (self):
        return -1, Error.ok()


class DefaultEnvironmentStrategy (EnvironmentStrategy):
    '''
    isolate -> ThreadLocalTop -> current context -> native context.
    '''
    name = "default"

    def find_environment (self):
        group = self.constants.context
        isolate = group.get('kIsolate')
        thread_offset = group.get('kIsolateThreadLocalTopOffset')
        context_offset = group.get('kThreadLocalTopContextOffset')
        if isolate <= 0 or thread_offset < 0 or context_offset < 0:
            log_debug("Isolate offsets are unset, no current context")
            return -1, Error.ok()

        context = self.snapshot.read_pointer(isolate + thread_offset + context_offset)
        if context is None:
            log_debug("Failed to read the current context")
            return -1, Error.ok()
        native = self.decoder.context_native(context)
        if native is None:
            return -1, Error.ok()
        return environment_from_context(self.decoder, self.constants, native), Error.ok()


class StackWalkEnvironmentStrategy (EnvironmentStrategy):
    '''
    Find a JavaScript frame (no native symbol) on the selected thread and
    follow its closure's context chain to the native context.
    '''
    name = "stack walk"

    def __init__ (self, snapshot, decoder, constants, max_context_depth=MAX_CONTEXT_DEPTH):
        EnvironmentStrategy.__init__(self, snapshot, decoder, constants)
        self.max_context_depth = max_context_depth

    def native_context_for_frame (self, frame):
        fn = self.decoder.frame_function(frame.fp)
        if fn is None:
            return None
        context = self.decoder.function_context(fn)
        depth = 0
        while not context is None and depth < self.max_context_depth:
            native = self.decoder.context_native(context)
            if not native is None and native == context:
                return context
            context = self.decoder.context_previous(context)
            depth += 1
        return None

    def find_environment (self):
        thread = self.snapshot.get_selected_thread()
        if thread is None:
            return -1, Error.failure("No selected thread")
        frames = self.snapshot.stack_frames(thread)
        if len(frames) == 0:
            return -1, Error.failure("Selected thread has no frames")

        for frame in frames:
            if frame.has_symbol():
                continue
            native = self.native_context_for_frame(frame)
            if native is None:
                continue
            env = environment_from_context(self.decoder, self.constants, native)
            if env != -1:
                log_debug("Found the environment from frame at 0x%08x"%frame.pc)
                return env, Error.ok()
        return -1, Error.ok()


class EnvironmentResolver (object):
    '''
    Tries each strategy in order and keeps the first environment that is
    not -1.
    '''
    def __init__ (self, snapshot, decoder, constants, strategies=None,
                  max_context_depth=MAX_CONTEXT_DEPTH):
        if strategies is None:
            strategies = [DefaultEnvironmentStrategy(snapshot, decoder, constants),
                          StackWalkEnvironmentStrategy(snapshot, decoder, constants,
                                                       max_context_depth)]
        self.strategies = strategies
        self.tried = []

    def resolve (self):
        self.tried = []
        last_err = None
        for strategy in self.strategies:
            self.tried.append(strategy.name)
            env, err = strategy.find_environment()
            if env != -1:
                return env, Error.ok()
            if err.fail():
                last_err = err
        if not last_err is None:
            return -1, last_err
        return -1, Error.failure("Failed to find the current environment")
