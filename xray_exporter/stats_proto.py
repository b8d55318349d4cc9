"""
Protobuf messages of Xray's `xray.app.stats.command.StatsService`.

Xray ships no Python stubs, so the few messages the exporter needs are
declared here as a FileDescriptorProto and turned into message classes at
import time. Field numbers match app/stats/command/command.proto:

    message GetStatsRequest  { string name = 1; bool reset = 2; }
    message Stat             { string name = 1; int64 value = 2; }
    message QueryStatsRequest  { string pattern = 1; bool reset = 2; }
    message QueryStatsResponse { repeated Stat stat = 1; }
    message GetStatsOnlineIpListResponse {
        string name = 1;
        map<string, int64> ips = 2;
    }
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "xray.app.stats.command"
SERVICE_PATH = f"/{PACKAGE}.StatsService"

QUERY_STATS_METHOD = f"{SERVICE_PATH}/QueryStats"
ONLINE_IP_LIST_METHOD = f"{SERVICE_PATH}/GetStatsOnlineIpList"

_F = descriptor_pb2.FieldDescriptorProto


def _field(msg, name, number, ftype, repeated=False, type_name=None):
    field = msg.field.add(
        name=name,
        number=number,
        type=ftype,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
    )
    if type_name:
        field.type_name = type_name
    return field


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="xray_exporter/stats_command.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    msg = fdp.message_type.add(name="GetStatsRequest")
    _field(msg, "name", 1, _F.TYPE_STRING)
    _field(msg, "reset", 2, _F.TYPE_BOOL)

    msg = fdp.message_type.add(name="Stat")
    _field(msg, "name", 1, _F.TYPE_STRING)
    _field(msg, "value", 2, _F.TYPE_INT64)

    msg = fdp.message_type.add(name="QueryStatsRequest")
    _field(msg, "pattern", 1, _F.TYPE_STRING)
    _field(msg, "reset", 2, _F.TYPE_BOOL)

    msg = fdp.message_type.add(name="QueryStatsResponse")
    _field(msg, "stat", 1, _F.TYPE_MESSAGE, repeated=True, type_name=f".{PACKAGE}.Stat")

    msg = fdp.message_type.add(name="GetStatsOnlineIpListResponse")
    _field(msg, "name", 1, _F.TYPE_STRING)
    entry = msg.nested_type.add(name="IpsEntry")
    entry.options.map_entry = True
    _field(entry, "key", 1, _F.TYPE_STRING)
    _field(entry, "value", 2, _F.TYPE_INT64)
    _field(
        msg,
        "ips",
        2,
        _F.TYPE_MESSAGE,
        repeated=True,
        type_name=f".{PACKAGE}.GetStatsOnlineIpListResponse.IpsEntry",
    )

    return fdp


# Private pool so these names never clash with generated Xray stubs that
# might be installed in the same interpreter.
_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


GetStatsRequest = _message("GetStatsRequest")
Stat = _message("Stat")
QueryStatsRequest = _message("QueryStatsRequest")
QueryStatsResponse = _message("QueryStatsResponse")
GetStatsOnlineIpListResponse = _message("GetStatsOnlineIpListResponse")
