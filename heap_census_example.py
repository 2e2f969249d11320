import sys, importlib
# requires redis for the reference export
from v8heap.v8_init import init_v8a_environment
from v8heap.redis_backed_refs import RefsRedisConn
from v8heap.v8_values import untag

# dumps_dir: directory of <start>-<end>.bin range dumps of the node process
# node_binary: the node binary the dumps were taken from
# module:DecoderClass: ValueDecoder subclass matching the node build, v8heap
# ships only the interface
if len(sys.argv) < 4:
    print ("usage: %s <dumps_dir> <node_binary> <module:DecoderClass>"%sys.argv[0])
    sys.exit(2)

dumps_dir = sys.argv[1]
node_binary = sys.argv[2]
decoder_name = sys.argv[3]

module_name, cls_name = decoder_name.split(':')
decoder = getattr(importlib.import_module(module_name), cls_name)()

v8a = init_v8a_environment(dumps_dir, elf_file=node_binary, decoder=decoder)

table, err = v8a.get_census_table()
if err.fail():
    print (err.message)
    sys.exit(1)
print (table)

# every object holding a "path" property, e.g. fs streams
refs, _ = v8a.find_references_by_property('path')
for line in refs.format_references():
    print (line)

handles, err = v8a.get_active_handles()
if err.success():
    print ("%d active handles"%len(handles))
    for addr in handles:
        holders, _ = v8a.find_references_by_value(untag(addr))
        print ("0x%016x referenced by %d objects"%(addr, len(holders)))

requests, err = v8a.get_active_requests()
if err.success():
    print ("%d active requests"%len(requests))

refs_con = RefsRedisConn(namespace='server-4f21a')
cnt, err = v8a.export_references_to_redis(refs_con)
if err.fail():
    print (err.message)
