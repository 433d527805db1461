from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from tmplink.audit.buffer import AuditBuffer
from tmplink.config import Settings
from tmplink.database.engine import create_database_engine
from tmplink.database.models import (
    Base,
    Flags,
    Function,
    Graph,
    GraphItem,
    Host,
    HostDiscovery,
    HostMacro,
    HostStatus,
    HostTemplate,
    HttpStep,
    HttpTest,
    Interface,
    Item,
    Trigger,
    TriggerTag,
)
from tmplink.database.store import RelationalStore
from tmplink.linkage.service import LinkageService


class Seeder:
    """
    Inserts fixture rows through the ORM.

    Ids are reserved through the ``ids`` table, the same sequence the
    engine allocates from, so rows seeded after a link never collide.
    """

    def __init__(self, session):
        self.session = session
        self.store = RelationalStore(session)

    def add(self, model, **values):
        pk = list(model.__table__.primary_key.columns)[0]
        if pk.name not in values:
            values[pk.name] = self.store.get_maxid_num(model.__tablename__, 1)
        obj = model(**values)
        self.session.add(obj)
        self.session.flush()
        return values[pk.name]

    def template(self, name: str) -> int:
        return self.add(Host, host=name, name=name, status=HostStatus.TEMPLATE)

    def host(self, name: str, agent_interface: bool = True) -> int:
        hostid = self.add(Host, host=name, name=name, status=HostStatus.MONITORED)
        if agent_interface:
            self.add(Interface, hostid=hostid, main=1, type=1)
        return hostid

    def link(self, hostid: int, templateid: int) -> int:
        return self.add(HostTemplate, hostid=hostid, templateid=templateid)

    def item(self, hostid: int, key: str, **values) -> int:
        values.setdefault("name", key)
        return self.add(Item, hostid=hostid, key_=key, **values)

    def trigger(self, description: str, expression: str, functions: Sequence[Tuple[int, str, str]],
                recovery_expression: str = "", tags: Sequence[Tuple[str, str]] = (),
                **values) -> Tuple[int, List[int]]:
        """``expression`` holds one ``%s`` per function, filled with its placeholder."""
        functionids = []
        if functions:
            first = self.store.get_maxid_num("functions", len(functions))
            functionids = list(range(first, first + len(functions)))
        placeholders = tuple("{%d}" % f for f in functionids)
        triggerid = self.add(Trigger, description=description, expression=expression % placeholders,
                             recovery_expression=recovery_expression % placeholders if recovery_expression else "",
                             **values)
        for functionid, (itemid, name, parameter) in zip(functionids, functions):
            self.add(Function, functionid=functionid, itemid=itemid, triggerid=triggerid, name=name,
                     parameter=parameter)
        for tag, value in tags:
            self.add(TriggerTag, triggerid=triggerid, tag=tag, value=value)
        return triggerid, functionids

    def graph(self, name: str, itemids: Sequence[int], **values) -> int:
        graphid = self.add(Graph, name=name, **values)
        for sortorder, itemid in enumerate(itemids):
            self.add(GraphItem, graphid=graphid, itemid=itemid, sortorder=sortorder)
        return graphid

    def httptest(self, hostid: int, name: str, steps: Sequence[str], **values) -> int:
        httptestid = self.add(HttpTest, hostid=hostid, name=name, **values)
        for no, step in enumerate(steps, start=1):
            self.add(HttpStep, httptestid=httptestid, no=no, name=step, url=f"http://example.com/{no}")
        return httptestid

    def discovery_rule(self, hostid: int, key: str, templateid: Optional[int] = None) -> int:
        return self.item(hostid, key, flags=Flags.RULE, templateid=templateid)

    def host_prototype(self, rule_itemid: int, host: str, templateid: Optional[int] = None,
                       macros: Dict[str, str] = None) -> int:
        hostid = self.add(Host, host=host, name=host, flags=Flags.PROTOTYPE, templateid=templateid)
        self.add(HostDiscovery, hostid=hostid, parent_itemid=rule_itemid, host=host)
        for macro, value in (macros or {}).items():
            self.add(HostMacro, hostid=hostid, macro=macro, value=value)
        return hostid


@pytest.fixture
def engine():
    engine = create_database_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings():
    return Settings(FLUSH_RETRY_DELAY=0.0, _env_file=None)


@pytest.fixture
def store(session, settings):
    return RelationalStore(session, settings)


@pytest.fixture
def audit(settings):
    return AuditBuffer(settings)


@pytest.fixture
def seed(session):
    return Seeder(session)


@pytest.fixture
def service(session, settings):
    return LinkageService(session, settings)


@pytest.fixture
def fetch(session):
    """Fresh column rows of a table, bypassing the ORM identity map."""

    def _fetch(model, *where) -> List[Dict[str, Any]]:
        table = model.__table__
        statement = table.select().where(*where) if where else table.select()
        pk = list(table.primary_key.columns)[0]
        return [dict(row) for row in session.execute(statement.order_by(pk)).mappings()]

    return _fetch


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+pysqlite:///{tmp_path / 'tmplink.db'}"


@pytest.fixture
def file_seed(db_url):
    """Seeder on a file database, for code that opens its own sessions."""
    engine = create_database_engine(db_url)
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield Seeder(session)
    session.close()
    engine.dispose()
