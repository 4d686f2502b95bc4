from __future__ import annotations

from types import SimpleNamespace

from riskhub.services.partition_safety import ensure_default_partition


class _Result:
    def __init__(self, value=None):
        self._value = value

    def first(self):
        return self._value

    def scalar(self):
        return self._value


class CatalogConnection:
    """Answers the pg_class / pg_inherits lookups from canned values."""

    def __init__(self, relation=None, default_child=None, dialect: str = "postgresql"):
        self.dialect = SimpleNamespace(name=dialect)
        self.relation = relation
        self.default_child = default_child
        self.statements: list[str] = []

    def execute(self, statement, parameters=None):
        sql = str(statement)
        self.statements.append(sql)
        if "pg_inherits" in sql:
            return _Result(self.default_child)
        if "pg_class" in sql:
            return _Result(self.relation)
        return _Result()

    def created(self) -> list[str]:
        return [sql for sql in self.statements if sql.startswith("CREATE")]


def test_creates_default_partition_when_missing():
    connection = CatalogConnection(relation=(16384, "p"))

    assert ensure_default_partition(connection, "d02_dengue") is True
    assert connection.created() == [
        'CREATE TABLE IF NOT EXISTS "public"."d02_dengue_default" PARTITION OF "public"."d02_dengue" DEFAULT'
    ]


def test_existing_default_partition_is_left_alone():
    connection = CatalogConnection(relation=(16384, "p"), default_child="d02_dengue_catchall")

    assert ensure_default_partition(connection, "d02_dengue") is False
    assert connection.created() == []


def test_plain_table_is_not_touched():
    connection = CatalogConnection(relation=(16384, b"r"))

    assert ensure_default_partition(connection, "d02_dengue") is False
    assert len(connection.statements) == 1


def test_missing_relation_is_not_touched():
    connection = CatalogConnection(relation=None)

    assert ensure_default_partition(connection, "d02_dengue") is False
    assert connection.created() == []


def test_relkind_returned_as_bytes_is_understood():
    connection = CatalogConnection(relation=(16384, b"p"))

    assert ensure_default_partition(connection, "d02_dengue", schema_name="surveillance") is True
    assert '"surveillance"."d02_dengue_default"' in connection.created()[0]


def test_other_dialects_are_skipped():
    connection = CatalogConnection(relation=(1, "p"), dialect="sqlite")

    assert ensure_default_partition(connection, "d02_dengue") is False
    assert connection.statements == []
