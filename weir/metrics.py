"""In-process metrics for the proxy: counters, gauges, histograms and their label vectors."""

from __future__ import annotations

import bisect
import dataclasses
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Mapping, Union

MODULE_WEIR_PROXY = "weirproxy"

# Subsystem labels.
LABEL_SERVER = "server"
LABEL_QUERY_CTX = "queryctx"
LABEL_BACKEND = "backend"
LABEL_SESSION = "session"
LABEL_DOMAIN = "domain"
LABEL_DDL_OWNER = "ddl-owner"
LABEL_DDL = "ddl"
LABEL_DDL_WORKER = "ddl-worker"
LABEL_DDL_SYNCER = "ddl-syncer"
LABEL_GC_WORKER = "gcworker"
LABEL_ANALYZE = "analyze"
LABEL_BATCH_RECV_LOOP = "batch-recv-loop"
LABEL_BATCH_SEND_LOOP = "batch-send-loop"

LABEL_SCOPE = "scope"
SCOPE_GLOBAL = "global"
SCOPE_SESSION = "session"

OP_SUCC = "ok"
OP_FAILED = "err"

# Label names.
LBL_UNRETRYABLE = "unretryable"
LBL_REACH_MAX = "reach_max"
LBL_OK = "ok"
LBL_ERROR = "error"
LBL_COMMIT = "commit"
LBL_ABORT = "abort"
LBL_ROLLBACK = "rollback"
LBL_TYPE = "type"
LBL_DB = "db"
LBL_TABLE = "table"
LBL_RESULT = "result"
LBL_SQL_TYPE = "sql_type"
LBL_GENERAL = "general"
LBL_INTERNAL = "internal"
LBL_TXN_MODE = "txn_mode"
LBL_PESSIMISTIC = "pessimistic"
LBL_OPTIMISTIC = "optimistic"
LBL_STORE = "store"
LBL_ADDRESS = "address"
LBL_BATCH_GET = "batch_get"
LBL_GET = "get"
LBL_NAMESPACE = "namespace"
LBL_CLUSTER = "cluster"
LBL_BACKEND_ADDR = "backend_addr"

# Backend events.
BACKEND_EVENT_INITING = "initing"
BACKEND_EVENT_INITED = "inited"
BACKEND_EVENT_CLOSING = "closing"
BACKEND_EVENT_CLOSED = "closed"

# Server events.
EVENT_START = "start"
EVENT_GRACEFUL_DOWN = "graceful_shutdown"
EVENT_KILL = "kill"
EVENT_CLOSE = "close"


class StmtType(IntEnum):
    """Kinds of SQL statements tracked by the query metrics."""

    UNKNOWN = 0
    SELECT = 1
    INSERT = 2
    UPDATE = 3
    DELETE = 4
    DDL = 5
    BEGIN = 6
    COMMIT = 7
    ROLLBACK = 8
    SET = 9
    SHOW = 10
    USE = 11
    COMMENT = 12


_STMT_NAMES = {
    StmtType.UNKNOWN: "unknown",
    StmtType.SELECT: "select",
    StmtType.INSERT: "insert",
    StmtType.UPDATE: "update",
    StmtType.DELETE: "delete",
    StmtType.DDL: "ddl",
    StmtType.BEGIN: "begin",
    StmtType.COMMIT: "commit",
    StmtType.ROLLBACK: "rollback",
    StmtType.SET: "set",
    StmtType.SHOW: "show",
    StmtType.USE: "use",
    StmtType.COMMENT: "comment",
}


def stmt_type_name(stmt_type: int) -> str:
    """Metric label for a statement type; unrecognised values map to "unknown"."""
    try:
        return _STMT_NAMES[StmtType(stmt_type)]
    except ValueError:
        return _STMT_NAMES[StmtType.UNKNOWN]


def ret_label(err: BaseException | None) -> str:
    """Return "ok" when there is no error and "err" otherwise."""
    return OP_SUCC if err is None else OP_FAILED


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """``count`` bucket bounds, the first ``start``, each ``factor`` times the last."""
    if count < 1:
        raise ValueError("exponential_buckets needs a positive count")
    if start <= 0:
        raise ValueError("exponential_buckets needs a positive start value")
    if factor <= 1:
        raise ValueError("exponential_buckets needs a factor greater than 1")
    buckets = []
    bound = start
    for _ in range(count):
        buckets.append(bound)
        bound *= factor
    return buckets


class Counter:
    """A value that only goes up."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counter cannot decrease")
        with self._lock:
            self._value += amount


class Gauge:
    """A value that can go up and down."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    def dec(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value -= amount


class Histogram:
    """Observations counted into cumulative buckets with upper bounds."""

    def __init__(self, buckets: list[float]) -> None:
        if list(buckets) != sorted(buckets):
            raise ValueError("histogram buckets must be in increasing order")
        self.buckets = list(buckets)
        self._lock = threading.Lock()
        self._counts = [0] * len(self.buckets)
        self._sum = 0.0
        self._count = 0

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def count(self) -> int:
        return self._count

    @property
    def bucket_counts(self) -> list[int]:
        """Cumulative count of observations at or below each bucket bound."""
        total = 0
        cumulative = []
        for n in self._counts:
            total += n
            cumulative.append(total)
        return cumulative

    def observe(self, value: float) -> None:
        with self._lock:
            index = bisect.bisect_left(self.buckets, value)
            if index < len(self._counts):
                self._counts[index] += 1
            self._sum += value
            self._count += 1


Metric = Union[Counter, Gauge, Histogram]


class MetricVec:
    """A family of metrics sharing a name, one child per set of label values."""

    def __init__(
        self,
        name: str,
        help: str,
        label_names: list[str],
        factory: Callable[[], Metric],
        namespace: str = "",
        subsystem: str = "",
    ) -> None:
        self.name = name
        self.help = help
        self.namespace = namespace
        self.subsystem = subsystem
        self.label_names = tuple(label_names)
        self.curried: dict[str, str] = {}
        self._factory = factory
        self._children: dict[tuple[str, ...], Metric] = {}
        self._lock = threading.Lock()

    @property
    def full_name(self) -> str:
        return "_".join(part for part in (self.namespace, self.subsystem, self.name) if part)

    @property
    def variable_labels(self) -> tuple[str, ...]:
        """Label names still to be given to :meth:`with_label_values`."""
        return tuple(name for name in self.label_names if name not in self.curried)

    def with_label_values(self, *args: str) -> Metric:
        """The child metric for the given values of the uncurried labels."""
        variable = self.variable_labels
        if len(args) != len(variable):
            raise ValueError(
                f"{self.full_name}: expected {len(variable)} label values, got {len(args)}"
            )
        given = iter(args)
        key = tuple(
            self.curried[name] if name in self.curried else str(next(given))
            for name in self.label_names
        )
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._factory()
                self._children[key] = child
            return child

    def curry_with(self, labels: Mapping[str, str]) -> MetricVec:
        """A view of this family with some labels fixed; children are shared."""
        curried = dict(self.curried)
        for name, value in labels.items():
            if name not in self.label_names:
                raise ValueError(f"{self.full_name}: unknown label {name!r}")
            if name in curried:
                raise ValueError(f"{self.full_name}: label {name!r} already curried")
            curried[name] = str(value)
        view = MetricVec.__new__(MetricVec)
        view.__dict__.update(self.__dict__)
        view.curried = curried
        return view


def _counter_vec(subsystem: str, name: str, help: str, labels: list[str]) -> Callable[[], MetricVec]:
    return lambda: MetricVec(name, help, labels, Counter, MODULE_WEIR_PROXY, subsystem)


def _gauge_vec(subsystem: str, name: str, help: str, labels: list[str]) -> Callable[[], MetricVec]:
    return lambda: MetricVec(name, help, labels, Gauge, MODULE_WEIR_PROXY, subsystem)


def _histogram_vec(
    namespace: str, subsystem: str, name: str, help: str, buckets: list[float], labels: list[str]
) -> Callable[[], MetricVec]:
    return lambda: MetricVec(name, help, labels, lambda: Histogram(buckets), namespace, subsystem)


@dataclass
class ProxyMetrics:
    """Every metric family the proxy reports."""

    panic_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_SERVER, "panic_total", "Counter of panic.", [LBL_CLUSTER, LBL_TYPE]
        )
    )
    query_total_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_SERVER, "query_total", "Counter of queries.", [LBL_CLUSTER, LBL_TYPE, LBL_RESULT]
        )
    )
    execute_error_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_SERVER, "execute_error_total", "Counter of execute errors.", [LBL_CLUSTER, LBL_TYPE]
        )
    )
    conn_gauge: MetricVec = field(
        default_factory=_gauge_vec(
            LABEL_SERVER, "connections", "Number of connections.", [LBL_CLUSTER]
        )
    )
    query_ctx_query_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_QUERY_CTX,
            "query_total",
            "Counter of queries.",
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_DB, LBL_TABLE, LBL_SQL_TYPE, LBL_RESULT],
        )
    )
    query_ctx_query_denied_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_QUERY_CTX,
            "query_denied",
            "Counter of denied queries.",
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_DB, LBL_TABLE, LBL_SQL_TYPE],
        )
    )
    query_ctx_query_duration_histogram: MetricVec = field(
        default_factory=_histogram_vec(
            MODULE_WEIR_PROXY,
            LABEL_QUERY_CTX,
            "handle_query_duration_seconds",
            "Bucketed histogram of processing time (s) of handled queries.",
            exponential_buckets(0.0005, 2, 29),
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_DB, LBL_TABLE, LBL_SQL_TYPE],
        )
    )
    query_ctx_gauge: MetricVec = field(
        default_factory=_gauge_vec(
            LABEL_QUERY_CTX,
            "queryctx",
            "Number of queryctx (equals to client connection).",
            [LBL_CLUSTER, LBL_NAMESPACE],
        )
    )
    query_ctx_attached_conn_gauge: MetricVec = field(
        default_factory=_gauge_vec(
            LABEL_QUERY_CTX,
            "attached_connections",
            "Number of attached backend connections.",
            [LBL_CLUSTER, LBL_NAMESPACE],
        )
    )
    query_ctx_transaction_duration: MetricVec = field(
        default_factory=_histogram_vec(
            "tidb",
            "session",
            "transaction_duration_seconds",
            "Bucketed histogram of a transaction execution duration, including retry.",
            exponential_buckets(0.001, 2, 28),
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_DB, LBL_SQL_TYPE],
        )
    )
    backend_event_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_BACKEND,
            "backend_event_total",
            "Counter of backend event.",
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_TYPE],
        )
    )
    backend_query_counter: MetricVec = field(
        default_factory=_counter_vec(
            LABEL_BACKEND,
            "b_conn_cnt",
            "Counter of backend query count.",
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_BACKEND_ADDR],
        )
    )
    backend_conn_in_use_gauge: MetricVec = field(
        default_factory=_gauge_vec(
            LABEL_BACKEND,
            "b_conn_in_use",
            "Number of backend conn in use.",
            [LBL_CLUSTER, LBL_NAMESPACE, LBL_BACKEND_ADDR],
        )
    )


def register_proxy_metrics(cluster: str) -> ProxyMetrics:
    """Create the proxy's metric families with the cluster label fixed."""
    base = ProxyMetrics()
    labels = {LBL_CLUSTER: cluster}
    return dataclasses.replace(
        base,
        **{f.name: getattr(base, f.name).curry_with(labels) for f in dataclasses.fields(base)},
    )