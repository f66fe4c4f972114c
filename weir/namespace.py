"""Namespaces: which users belong where, and hot reloading of namespace sets."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Protocol

from weir.metrics import MetricVec

logger = logging.getLogger(__name__)


class NamespaceError(Exception):
    """Base class for namespace errors."""


class DuplicatedUserError(NamespaceError):
    """A user name is claimed by more than one namespace."""


class NamespaceNotPreparedError(NamespaceError):
    """A reload was committed for a namespace that was never prepared."""


class NamespaceNotFoundError(NamespaceError):
    """The namespace no longer exists in the current namespace set."""


@dataclass
class FrontendConfig:
    """Client-facing settings of a namespace."""

    users: list[str] = field(default_factory=list)
    allowed_dbs: list[str] = field(default_factory=list)


@dataclass
class NamespaceConfig:
    """Configuration of one namespace."""

    namespace: str
    frontend: FrontendConfig = field(default_factory=FrontendConfig)


class _Namespace(Protocol):
    def is_database_allowed(self, db: str) -> bool: ...

    def list_databases(self) -> list[str]: ...

    def is_denied_sql(self, sql_feature: int) -> bool: ...

    def is_allowed_sql(self, sql_feature: int) -> bool: ...

    def get_pooled_conn(self) -> Any: ...

    def get_breaker(self) -> Any: ...

    def get_rate_limiter(self) -> Any: ...


NamespaceBuilder = Callable[[NamespaceConfig], Any]
NamespaceCloser = Callable[[Any], None]


@dataclass
class FrontendNamespace:
    """Database and SQL access rules of a namespace."""

    allowed_dbs: list[str] = field(default_factory=list)
    sql_blacklist: Mapping[int, str] = field(default_factory=dict)
    sql_whitelist: Mapping[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.allowed_dbs = list(self.allowed_dbs)
        self._allowed_db_set = frozenset(self.allowed_dbs)
        self.sql_blacklist = dict(self.sql_blacklist)
        self.sql_whitelist = dict(self.sql_whitelist)

    def is_database_allowed(self, db: str) -> bool:
        return db in self._allowed_db_set

    def list_databases(self) -> list[str]:
        """A copy of the allowed databases, in configured order."""
        return list(self.allowed_dbs)

    def is_denied_sql(self, sql_feature: int) -> bool:
        return sql_feature in self.sql_blacklist

    def is_allowed_sql(self, sql_feature: int) -> bool:
        return sql_feature in self.sql_whitelist


class UserNamespaceMapper:
    """Maps each user name to the namespace it belongs to."""

    def __init__(self, user_to_namespace: Mapping[str, str] | None = None) -> None:
        self._user_to_namespace: dict[str, str] = dict(user_to_namespace or {})

    @classmethod
    def from_configs(cls, configs: Iterable[NamespaceConfig]) -> UserNamespaceMapper:
        """Build the mapping; raise DuplicatedUserError if a user appears twice."""
        mapping: dict[str, str] = {}
        for config in configs:
            for user in config.frontend.users:
                origin = mapping.get(user)
                if origin is not None:
                    raise DuplicatedUserError(
                        f"duplicated user: user: {user}, namespace: {origin}, {config.namespace}"
                    )
                mapping[user] = config.namespace
        return cls(mapping)

    def get_user_namespace(self, username: str) -> str | None:
        return self._user_to_namespace.get(username)

    def clone(self) -> UserNamespaceMapper:
        return UserNamespaceMapper(self._user_to_namespace)

    def remove_namespace_users(self, namespace: str) -> None:
        self._user_to_namespace = {
            user: ns for user, ns in self._user_to_namespace.items() if ns != namespace
        }

    def add_namespace_users(self, namespace: str, frontend: FrontendConfig) -> None:
        """Add the users of ``frontend``; users added before a duplicate stay."""
        for user in frontend.users:
            origin = self._user_to_namespace.get(user)
            if origin is not None:
                raise DuplicatedUserError(f"duplicated user: namespace: {origin}")
            self._user_to_namespace[user] = namespace


class NamespaceHolder:
    """The set of built namespaces, by name."""

    def __init__(self, namespaces: Mapping[str, Any] | None = None) -> None:
        self._namespaces: dict[str, Any] = dict(namespaces or {})

    @classmethod
    def from_configs(
        cls, configs: Iterable[NamespaceConfig], build: NamespaceBuilder
    ) -> NamespaceHolder:
        namespaces: dict[str, Any] = {}
        for config in configs:
            try:
                namespaces[config.namespace] = build(config)
            except Exception as exc:
                raise NamespaceError(
                    f"create namespace error, namespace: {config.namespace}: {exc}"
                ) from exc
        return cls(namespaces)

    def get(self, name: str) -> Any | None:
        return self._namespaces.get(name)

    def set(self, name: str, namespace: Any) -> None:
        self._namespaces[name] = namespace

    def delete(self, name: str) -> None:
        self._namespaces.pop(name, None)

    def clone(self) -> NamespaceHolder:
        return NamespaceHolder(self._namespaces)

    def __contains__(self, name: object) -> bool:
        return name in self._namespaces


class NamespaceWrapper:
    """A handle to a namespace by name that always reaches its current version."""

    def __init__(self, manager: NamespaceManager, name: str) -> None:
        self._manager = manager
        self.name = name
        self._conn_count = 0
        self._lock = threading.Lock()

    @property
    def conn_count(self) -> int:
        return self._conn_count

    def _current(self) -> _Namespace:
        namespace = self._manager._current_namespaces().get(self.name)
        if namespace is None:
            raise NamespaceNotFoundError("namespace not found")
        return namespace

    def is_database_allowed(self, db: str) -> bool:
        return self._current().is_database_allowed(db)

    def list_databases(self) -> list[str]:
        return self._current().list_databases()

    def is_denied_sql(self, sql_feature: int) -> bool:
        return self._current().is_denied_sql(sql_feature)

    def is_allowed_sql(self, sql_feature: int) -> bool:
        return self._current().is_allowed_sql(sql_feature)

    def get_pooled_conn(self) -> Any:
        return self._current().get_pooled_conn()

    def _report_conn_count(self, count: int) -> None:
        gauge_vec = self._manager.conn_gauge
        if gauge_vec is not None:
            gauge_vec.with_label_values(self.name).set(count)

    def incr_conn_count(self) -> None:
        with self._lock:
            self._conn_count += 1
            count = self._conn_count
        self._report_conn_count(count)

    def desc_conn_count(self) -> None:
        with self._lock:
            self._conn_count -= 1
            count = self._conn_count
        self._report_conn_count(count)

    def closed(self) -> bool:
        return self.name not in self._manager._current_namespaces()

    def get_breaker(self) -> Any:
        return self._current().get_breaker()

    def get_rate_limiter(self) -> Any:
        return self._current().get_rate_limiter()


class NamespaceManager:
    """Holds two generations of users and namespaces and switches between them.

    A reload builds the next generation with :meth:`prepare_reload_namespace`
    and makes it current with :meth:`commit_reload_namespaces`.
    """

    def __init__(
        self,
        users: UserNamespaceMapper,
        namespaces: NamespaceHolder,
        build: NamespaceBuilder,
        close: NamespaceCloser,
    ) -> None:
        self._users: list[UserNamespaceMapper | None] = [users, None]
        self._namespaces: list[NamespaceHolder | None] = [namespaces, None]
        self._build = build
        self._close = close
        self._current_index = 0
        self._reload_lock = threading.Lock()
        self._reload_prepared: set[str] = set()
        self.conn_gauge: MetricVec | None = None

    @classmethod
    def create(
        cls,
        configs: Iterable[NamespaceConfig],
        build: NamespaceBuilder,
        close: NamespaceCloser,
    ) -> NamespaceManager:
        configs = list(configs)
        users = UserNamespaceMapper.from_configs(configs)
        namespaces = NamespaceHolder.from_configs(configs, build)
        return cls(users, namespaces, build, close)

    def auth(self, username: str) -> NamespaceWrapper | None:
        """A handle to the user's namespace, or None if the user is unknown."""
        name = self._current_users().get_user_namespace(username)
        if name is None:
            return None
        return NamespaceWrapper(self, name)

    def prepare_reload_namespace(self, namespace: str, config: NamespaceConfig) -> None:
        with self._reload_lock:
            new_users = self._current_users().clone()
            new_users.remove_namespace_users(namespace)
            new_users.add_namespace_users(namespace, config.frontend)

            try:
                new_namespace = self._build(config)
            except Exception as exc:
                raise NamespaceError(f"build namespace error: {exc}") from exc

            new_namespaces = self._current_namespaces().clone()
            new_namespaces.set(namespace, new_namespace)

            other = 1 - self._current_index
            self._users[other] = new_users
            self._namespaces[other] = new_namespaces
            self._reload_prepared.add(namespace)

    def commit_reload_namespaces(self, namespaces: Iterable[str]) -> None:
        with self._reload_lock:
            for namespace in namespaces:
                if namespace not in self._reload_prepared:
                    raise NamespaceNotPreparedError(f"namespace is not prepared: {namespace}")
            self._current_index = 1 - self._current_index

    def remove_namespace(self, name: str) -> None:
        """Drop a namespace's users and close it; a failed close keeps the namespace."""
        with self._reload_lock:
            self._current_users().remove_namespace_users(name)
            holder = self._current_namespaces()
            namespace = holder.get(name)
            if namespace is None:
                return
            try:
                self._close(namespace)
            except Exception:
                logger.exception("remove namespace error, namespace: %s", name)
                return
            holder.delete(name)

    def _current_users(self) -> UserNamespaceMapper:
        return self._users[self._current_index]

    def _current_namespaces(self) -> NamespaceHolder:
        return self._namespaces[self._current_index]