import pytest

from weir.metrics import register_proxy_metrics
from weir.namespace import (
    DuplicatedUserError,
    FrontendConfig,
    FrontendNamespace,
    NamespaceConfig,
    NamespaceError,
    NamespaceHolder,
    NamespaceManager,
    NamespaceNotFoundError,
    NamespaceNotPreparedError,
    NamespaceWrapper,
    UserNamespaceMapper,
)


class _FakeNamespace:
    def __init__(self, config):
        self.name = config.namespace
        self.frontend = FrontendNamespace(allowed_dbs=config.frontend.allowed_dbs)
        self.closed = False

    def is_database_allowed(self, db):
        return self.frontend.is_database_allowed(db)

    def list_databases(self):
        return self.frontend.list_databases()

    def is_denied_sql(self, sql_feature):
        return self.frontend.is_denied_sql(sql_feature)

    def is_allowed_sql(self, sql_feature):
        return self.frontend.is_allowed_sql(sql_feature)

    def get_pooled_conn(self):
        return ("conn", self.name)

    def get_breaker(self):
        return ("breaker", self.name)

    def get_rate_limiter(self):
        return ("limiter", self.name)


def _config(name, users, dbs=()):
    return NamespaceConfig(name, FrontendConfig(users=list(users), allowed_dbs=list(dbs)))


def _close_ok(ns):
    ns.closed = True


def _close_fail(ns):
    raise RuntimeError("cannot close")


@pytest.fixture
def manager():
    configs = [_config("ns1", ["alice", "bob"], ["db1"]), _config("ns2", ["carol"], ["db2"])]
    return NamespaceManager.create(configs, _FakeNamespace, _close_ok)


def test_frontend_namespace_rules():
    fe = FrontendNamespace(allowed_dbs=["a", "b"], sql_blacklist={7: "select 1"}, sql_whitelist={9: "x"})
    assert fe.is_database_allowed("a")
    assert not fe.is_database_allowed("c")
    assert fe.is_denied_sql(7)
    assert not fe.is_denied_sql(9)
    assert fe.is_allowed_sql(9)
    assert not fe.is_allowed_sql(7)


def test_frontend_list_databases_is_copy():
    fe = FrontendNamespace(allowed_dbs=["a", "b"])
    dbs = fe.list_databases()
    dbs.append("c")
    assert fe.list_databases() == ["a", "b"]


def test_mapper_from_configs():
    mapper = UserNamespaceMapper.from_configs([_config("ns1", ["u1"]), _config("ns2", ["u2"])])
    assert mapper.get_user_namespace("u1") == "ns1"
    assert mapper.get_user_namespace("u2") == "ns2"
    assert mapper.get_user_namespace("nobody") is None


def test_mapper_duplicated_user():
    with pytest.raises(DuplicatedUserError):
        UserNamespaceMapper.from_configs([_config("ns1", ["u1"]), _config("ns2", ["u1"])])


def test_mapper_clone_is_independent():
    mapper = UserNamespaceMapper.from_configs([_config("ns1", ["u1"])])
    copy = mapper.clone()
    copy.remove_namespace_users("ns1")
    assert copy.get_user_namespace("u1") is None
    assert mapper.get_user_namespace("u1") == "ns1"


def test_mapper_add_and_remove():
    mapper = UserNamespaceMapper.from_configs([_config("ns1", ["u1", "u2"]), _config("ns2", ["u3"])])
    mapper.remove_namespace_users("ns1")
    assert mapper.get_user_namespace("u1") is None
    assert mapper.get_user_namespace("u3") == "ns2"
    mapper.add_namespace_users("ns4", FrontendConfig(users=["u4"]))
    assert mapper.get_user_namespace("u4") == "ns4"
    with pytest.raises(DuplicatedUserError):
        mapper.add_namespace_users("ns5", FrontendConfig(users=["u3"]))


def test_holder_operations():
    holder = NamespaceHolder.from_configs([_config("ns1", [])], _FakeNamespace)
    ns = holder.get("ns1")
    assert ns.name == "ns1"
    copy = holder.clone()
    copy.delete("ns1")
    assert copy.get("ns1") is None
    assert holder.get("ns1") is ns
    holder.set("ns2", "value")
    assert holder.get("ns2") == "value"


def test_holder_build_error_wrapped():
    def build(config):
        raise RuntimeError("boom")

    with pytest.raises(NamespaceError, match="ns1"):
        NamespaceHolder.from_configs([_config("ns1", [])], build)


def test_manager_auth(manager):
    wrapper = manager.auth("alice")
    assert isinstance(wrapper, NamespaceWrapper)
    assert wrapper.name == "ns1"
    assert manager.auth("nobody") is None


def test_wrapper_delegates(manager):
    wrapper = manager.auth("carol")
    assert wrapper.is_database_allowed("db2")
    assert not wrapper.is_database_allowed("db1")
    assert wrapper.list_databases() == ["db2"]
    assert wrapper.get_pooled_conn() == ("conn", "ns2")
    assert wrapper.get_breaker() == ("breaker", "ns2")
    assert wrapper.get_rate_limiter() == ("limiter", "ns2")
    assert not wrapper.is_denied_sql(1)
    assert not wrapper.is_allowed_sql(1)
    assert not wrapper.closed()


def test_prepare_and_commit_reload(manager):
    wrapper = manager.auth("alice")
    manager.prepare_reload_namespace("ns1", _config("ns1", ["dave"], ["db9"]))
    # Not visible until committed.
    assert wrapper.list_databases() == ["db1"]
    assert manager.auth("dave") is None
    manager.commit_reload_namespaces(["ns1"])
    assert wrapper.list_databases() == ["db9"]
    assert manager.auth("dave").name == "ns1"
    assert manager.auth("alice") is None
    assert manager.auth("carol").name == "ns2"


def test_commit_unprepared_namespace(manager):
    with pytest.raises(NamespaceNotPreparedError):
        manager.commit_reload_namespaces(["ns2"])
    assert manager.auth("alice").name == "ns1"


def test_prepare_duplicated_user(manager):
    with pytest.raises(DuplicatedUserError):
        manager.prepare_reload_namespace("ns3", _config("ns3", ["carol"]))


def test_prepare_build_error():
    calls = []

    def build(config):
        calls.append(config.namespace)
        if len(calls) > 1:
            raise RuntimeError("boom")
        return _FakeNamespace(config)

    mgr = NamespaceManager.create([_config("ns1", ["u1"])], build, _close_ok)
    with pytest.raises(NamespaceError):
        mgr.prepare_reload_namespace("ns1", _config("ns1", ["u1"]))
    with pytest.raises(NamespaceNotPreparedError):
        mgr.commit_reload_namespaces(["ns1"])


def test_remove_namespace(manager):
    wrapper = manager.auth("alice")
    ns = manager._current_namespaces().get("ns1")
    manager.remove_namespace("ns1")
    assert ns.closed
    assert wrapper.closed()
    assert manager.auth("alice") is None
    with pytest.raises(NamespaceNotFoundError):
        wrapper.list_databases()


def test_remove_namespace_close_failure_keeps_namespace():
    mgr = NamespaceManager.create([_config("ns1", ["u1"], ["db1"])], _FakeNamespace, _close_fail)
    wrapper = mgr.auth("u1")
    mgr.remove_namespace("ns1")
    assert not wrapper.closed()
    assert wrapper.list_databases() == ["db1"]
    assert mgr.auth("u1") is None


def test_remove_unknown_namespace_is_noop(manager):
    manager.remove_namespace("missing")
    assert manager.auth("alice").name == "ns1"


def test_duplicated_user_in_create():
    with pytest.raises(DuplicatedUserError):
        NamespaceManager.create(
            [_config("ns1", ["u1"]), _config("ns2", ["u1"])], _FakeNamespace, _close_ok
        )


def test_conn_count_reports_gauge(manager):
    metrics = register_proxy_metrics("cluster-a")
    manager.conn_gauge = metrics.query_ctx_gauge
    wrapper = manager.auth("alice")
    wrapper.incr_conn_count()
    wrapper.incr_conn_count()
    assert wrapper.conn_count == 2
    assert metrics.query_ctx_gauge.with_label_values("ns1").value == 2
    wrapper.desc_conn_count()
    assert wrapper.conn_count == 1
    assert metrics.query_ctx_gauge.with_label_values("ns1").value == 1


def test_conn_count_without_gauge(manager):
    wrapper = manager.auth("bob")
    wrapper.incr_conn_count()
    wrapper.desc_conn_count()
    assert wrapper.conn_count == 0