import argparse
from typing import Optional

from riskhub.config import get_settings
from riskhub.database import SessionLocal
from riskhub.services.fact_table_provisioner import FactTableProvisioningError, provision_fact_table
from riskhub.services.identifiers import InvalidIdentifierError


def provision(table_name: str, disease_code: Optional[str], baseline_year: Optional[int]) -> None:
    settings = get_settings()
    with SessionLocal() as session:
        try:
            result = provision_fact_table(
                session.connection(),
                table_name,
                disease_code,
                schema_name=settings.fact_schema,
                baseline_year=baseline_year or settings.fact_baseline_year,
                max_identifier_length=settings.max_identifier_length,
            )
            session.commit()
        except (InvalidIdentifierError, FactTableProvisioningError) as exc:
            session.rollback()
            raise SystemExit(f"Failed to provision fact table: {exc}") from exc

    state = "already existed" if result.already_existed else "created"
    print(f"{result.qualified_table} {state}")
    print(f"  sequence:   {result.qualified_sequence}")
    print(f"  partitions: {', '.join(result.partition_names)}, {result.names.default_partition}")
    if result.mapping_written:
        print(f"  mapped to:  {result.disease_code}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a partitioned fact table for one disease.")
    parser.add_argument("--table", required=True, help="Fact table name, e.g. d02_dengue")
    parser.add_argument("--disease-code", help="Disease code to map the table to, e.g. D02")
    parser.add_argument(
        "--baseline-year",
        type=int,
        help="Year whose quarterly partitions are created (defaults to FACT_BASELINE_YEAR)",
    )

    args = parser.parse_args()
    provision(args.table, args.disease_code, args.baseline_year)


if __name__ == "__main__":
    main()
