import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# 导入 rigshare.main 会在模块级别建库，测试期间指向临时目录
os.environ.setdefault("RIGSHARE_DB_PATH", str(Path(tempfile.mkdtemp(prefix="rigshare-tests-")) / "rigshare.db"))

import pytest  # noqa: E402

from rigshare.catalog import SQLiteComponentCatalog  # noqa: E402
from rigshare.db import connect, init_schema  # noqa: E402
from rigshare.engine import BuildEngine  # noqa: E402
from rigshare.identity import UserDirectory, UserRecord  # noqa: E402
from rigshare.schemas import Component, Principal, Selection  # noqa: E402
from rigshare.store import SQLiteBuildStore  # noqa: E402


class SteppingClock:
    """每次调用前进一秒，保证 updated_at 排序稳定"""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


CATALOG = [
    Component(id="C1", name="Intel Core i7-13700K", brand="Intel", model="i7-13700K", category="CPU", price=185000,
              images=["https://img.example/c1.png"], specs={"cores": 16}),
    Component(id="C2", name="GeForce RTX 4070", brand="NVIDIA", model="RTX 4070", category="GPU", price=259000),
    Component(id="C3", name="Kingston Fury 32GB", brand="Kingston", model="KF560C36", category="RAM", price=59000),
    Component(id="C4", name="Samsung 990 Pro 1TB", brand="Samsung", model="990 Pro", category="STORAGE", price=52000),
]


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "rigshare.db"
    init_schema(path)
    return path


@pytest.fixture
def catalog(db_path):
    catalog = SQLiteComponentCatalog(db_path)
    for component in CATALOG:
        catalog.upsert(component)
    return catalog


@pytest.fixture
def users(db_path):
    directory = UserDirectory(db_path)
    directory.register(UserRecord(id="U1", username="alice", first_name="Alice", last_name="Smith"))
    directory.register(UserRecord(id="U2", username="bob"))
    return directory


@pytest.fixture
def store(db_path):
    return SQLiteBuildStore(db_path, clock=SteppingClock())


@pytest.fixture
def engine(store, catalog, users):
    return BuildEngine(store, catalog)


@pytest.fixture
def u1():
    return Principal(id="U1")


@pytest.fixture
def u2():
    return Principal(id="U2")


@pytest.fixture
def gaming_selections():
    return [
        Selection(category="CPU", component_id="C1", quantity=1),
        Selection(category="GPU", component_id="C2", quantity=1),
    ]


@pytest.fixture
def component_rows(db_path):
    def _count(build_id: str) -> int:
        with connect(db_path) as conn:
            return int(conn.execute("SELECT COUNT(*) FROM build_components WHERE build_id = ?", (build_id,)).fetchone()[0])

    return _count
