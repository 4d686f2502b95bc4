from __future__ import annotations

from types import SimpleNamespace
from typing import Optional

import pytest
from sqlalchemy.exc import ProgrammingError

from riskhub.services.fact_table_provisioner import FactTableProvisioningError, provision_fact_table
from riskhub.services.fact_table_schema import build_fact_table_names, quarterly_partitions
from riskhub.services.identifiers import InvalidIdentifierError


class _Result:
    def __init__(self, value=None):
        self._value = value

    def scalar(self):
        return self._value

    def first(self):
        return self._value


class RecordingConnection:
    """Stands in for a PostgreSQL connection and records every statement."""

    def __init__(self, dialect: str = "postgresql", exists: bool = False, fail_on: Optional[str] = None):
        self.dialect = SimpleNamespace(name=dialect)
        self.exists = exists
        self.fail_on = fail_on
        self.statements: list[str] = []
        self.parameters: list[object] = []

    def execute(self, statement, parameters=None):
        sql = str(statement)
        if self.fail_on and self.fail_on in sql:
            raise ProgrammingError(sql, parameters, Exception('relation "diseases" does not exist'))
        self.statements.append(sql)
        self.parameters.append(parameters)
        if "to_regclass" in sql:
            return _Result(self.exists)
        if "PARTITION BY RANGE" in sql:
            self.exists = True
        return _Result()

    def ddl(self) -> list[str]:
        return [sql for sql in self.statements if "to_regclass" not in sql]


def test_quarterly_partitions_cover_the_year_with_half_open_bounds():
    partitions = quarterly_partitions("d02_dengue", 2024)
    assert [p.name for p in partitions] == [
        "d02_dengue_2024_q1",
        "d02_dengue_2024_q2",
        "d02_dengue_2024_q3",
        "d02_dengue_2024_q4",
    ]
    assert partitions[0].start.isoformat() == "2024-01-01"
    assert partitions[-1].end.isoformat() == "2025-01-01"
    for earlier, later in zip(partitions, partitions[1:]):
        assert earlier.end == later.start


def test_derived_names_are_truncated_to_the_identifier_limit():
    names = build_fact_table_names("d02_" + "x" * 55, 2024)
    assert names.table == "d02_" + "x" * 55
    assert len(names.sequence) == 63
    assert len(names.index) == 63
    assert all(len(p.name) <= 63 for p in names.partitions)


def test_provision_runs_ordered_ddl_and_writes_mapping():
    connection = RecordingConnection()

    result = provision_fact_table(connection, "D02_Dengue", "d02")

    ddl = connection.ddl()
    assert ddl[0].startswith('CREATE TABLE IF NOT EXISTS "public"."disease_fact_tables"')
    assert ddl[1] == 'CREATE SEQUENCE IF NOT EXISTS "public"."d02_dengue_id_seq"'
    assert "nextval('public.d02_dengue_id_seq'::regclass)" in ddl[2]
    assert 'CONSTRAINT "d02_dengue_pkey" PRIMARY KEY (onset_date_parsed, id)' in ddl[2]
    assert 'REFERENCES "public"."diseases" (code) ON DELETE RESTRICT ON UPDATE CASCADE' in ddl[2]
    assert ddl[2].endswith("PARTITION BY RANGE (onset_date_parsed)")
    assert ddl[3] == 'ALTER SEQUENCE "public"."d02_dengue_id_seq" OWNED BY "public"."d02_dengue".id'
    assert 'ON ONLY "public"."d02_dengue"' in ddl[4]
    assert "FOR VALUES FROM ('2024-01-01') TO ('2024-04-01')" in ddl[5]
    assert "FOR VALUES FROM ('2024-10-01') TO ('2025-01-01')" in ddl[8]
    assert ddl[9] == (
        'CREATE TABLE IF NOT EXISTS "public"."d02_dengue_default" PARTITION OF "public"."d02_dengue" DEFAULT'
    )
    assert ddl[10].startswith('INSERT INTO "public"."disease_fact_tables"')
    assert "ON CONFLICT (disease_code) DO UPDATE" in ddl[10]
    assert connection.parameters[-1] == {
        "disease_code": "D02",
        "table_name": "d02_dengue",
        "schema_name": "public",
    }

    assert result.qualified_table == "public.d02_dengue"
    assert result.qualified_sequence == "public.d02_dengue_id_seq"
    assert result.mapping_written is True
    assert result.already_existed is False


def test_provision_without_disease_code_skips_mapping():
    connection = RecordingConnection(exists=True)

    result = provision_fact_table(connection, "d03_zika", baseline_year=2025)

    assert result.mapping_written is False
    assert result.already_existed is True
    assert result.partition_names[0] == "d03_zika_2025_q1"
    assert not any(sql.startswith("INSERT") for sql in connection.statements)


def test_invalid_identifiers_stop_before_any_sql():
    connection = RecordingConnection()
    with pytest.raises(InvalidIdentifierError):
        provision_fact_table(connection, "d03_zika", "D02")
    with pytest.raises(InvalidIdentifierError):
        provision_fact_table(connection, "d02_dengue", schema_name="bad schema")
    assert connection.statements == []


def test_non_postgres_connection_is_refused():
    connection = RecordingConnection(dialect="sqlite")
    with pytest.raises(FactTableProvisioningError, match="PostgreSQL"):
        provision_fact_table(connection, "d02_dengue", "D02")
    assert connection.statements == []


def test_database_failure_names_the_table_and_sequence():
    connection = RecordingConnection(fail_on="PARTITION BY RANGE")
    with pytest.raises(FactTableProvisioningError) as excinfo:
        provision_fact_table(connection, "d02_dengue", "D02", schema_name="surveillance")
    message = str(excinfo.value)
    assert "surveillance.d02_dengue" in message
    assert "surveillance.d02_dengue_id_seq" in message
    assert 'relation "diseases" does not exist' in message


def test_repeated_provisioning_is_idempotent():
    connection = RecordingConnection()

    first = provision_fact_table(connection, "d02_dengue", "D02")
    first_ddl = connection.ddl()
    connection.statements.clear()
    connection.parameters.clear()
    second = provision_fact_table(connection, "d02_dengue", "D02")

    assert first.already_existed is False
    assert second.already_existed is True
    assert connection.ddl() == first_ddl
    assert all(
        "IF NOT EXISTS" in sql or sql.startswith("ALTER SEQUENCE") or "ON CONFLICT" in sql
        for sql in first_ddl
    )
    assert second.partition_names == first.partition_names
    assert second.mapping_written is True
