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

import redis

from v8heap.v8_refs import BY_INDEX, BY_ATTRIBUTE, format_reference


class RefsRedisConn(object):
    REDIS_SINKS_SET_KEY = "sinks"
    REDIS_SINKS_SRCS_SET_KEY = "sinks"
    REDIS_SRCS_SET_KEY = "srcs"
    REDIS_PROPS_SET_KEY = "props"
    REDIS_STRINGS_SET_KEY = "strings"
    REDIS_REFS_LIST_KEY = "refs"

    def __init__(self, redis_host='127.0.0.1', redis_port=6379, redis_db=0,
                 namespace="default", redis_con=None, connect=True):
        self.redis_host = redis_host
        self.redis_port = redis_port
        self.redis_db = redis_db
        self.namespace = namespace
        self.redis_con = redis_con
        if self.redis_con is None and connect:
            self.redis_con = self.connect_to_redis()

    def connect_to_redis (self):
        return redis.StrictRedis(host=self.redis_host,
                                 port=self.redis_port,
                                 db=self.redis_db)

    def namespace_key (self):
        if self.namespace:
            return self.namespace+":"
        return ""

    def sinks_set_key(self):
        return self.namespace_key()+self.REDIS_SINKS_SET_KEY

    def srcs_set_key(self):
        return self.namespace_key()+self.REDIS_SRCS_SET_KEY

    def sinks_srcs_set_key(self, addr):
        return self.namespace_key()+self.REDIS_SINKS_SRCS_SET_KEY+":"+str(addr)

    def props_set_key(self):
        return self.namespace_key()+self.REDIS_PROPS_SET_KEY

    def prop_holders_set_key(self, name):
        return self.namespace_key()+self.REDIS_PROPS_SET_KEY+":"+str(name)

    def strings_set_key(self):
        return self.namespace_key()+self.REDIS_STRINGS_SET_KEY

    def string_holders_set_key(self, value):
        return self.namespace_key()+self.REDIS_STRINGS_SET_KEY+":"+value

    def refs_set_key(self, addr):
        return self.namespace_key()+self.REDIS_REFS_LIST_KEY+":"+str(addr)

    # store references
    def add_reference_info(self, info):
        if self.redis_con is None:
            return None
        src = info.address
        if info.variant in (BY_INDEX, BY_ATTRIBUTE):
            sink = info.referred_address
            self.redis_con.sadd(self.sinks_set_key(), sink)
            self.redis_con.sadd(self.srcs_set_key(), src)
            self.redis_con.sadd(self.sinks_srcs_set_key(sink), src)
            self.redis_con.sadd(self.refs_set_key(sink), format_reference(info))
        else:
            self.redis_con.sadd(self.strings_set_key(), info.string_value)
            self.redis_con.sadd(self.string_holders_set_key(info.string_value), src)
        if isinstance(info.locator, str):
            self.redis_con.sadd(self.props_set_key(), info.locator)
            self.redis_con.sadd(self.prop_holders_set_key(info.locator), src)
        return True

    def add_reference_record(self, record):
        if self.redis_con is None:
            return None
        cnt = 0
        for info in record:
            self.add_reference_info(info)
            cnt += 1
        return cnt

    # calls to check for references
    def has_sink(self, addr):
        if self.redis_con is None:
            return None
        return self.redis_con.sismember(self.sinks_set_key(), addr)

    def has_src(self, addr):
        if self.redis_con is None:
            return None
        return self.redis_con.sismember(self.srcs_set_key(), addr)

    def sink_has_src(self, sink, addr):
        if self.redis_con is None:
            return None
        return self.redis_con.sismember(self.sinks_srcs_set_key(sink), addr)

    # retrieve data
    def get_sink_srcs_set(self, addr):
        if self.redis_con is None:
            return None
        return self.redis_con.smembers(self.sinks_srcs_set_key(addr))

    def get_sink_refs_set(self, addr):
        if self.redis_con is None:
            return None
        return self.redis_con.smembers(self.refs_set_key(addr))

    def get_property_holders(self, name):
        if self.redis_con is None:
            return None
        return self.redis_con.smembers(self.prop_holders_set_key(name))

    def get_string_holders(self, value):
        if self.redis_con is None:
            return None
        return self.redis_con.smembers(self.string_holders_set_key(value))

    # !!!!Danger this is a heavy Operation
    def get_sinks_set(self):
        if self.redis_con is None:
            return None
        return self.redis_con.smembers(self.sinks_set_key())
