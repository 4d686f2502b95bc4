from riskhub.services.fact_import import import_fact_file
from riskhub.services.fact_table_provisioner import provision_fact_table
from riskhub.services.fact_table_resolver import resolve_fact_table
from riskhub.services.partition_safety import ensure_default_partition

__all__ = [
    "ensure_default_partition",
    "import_fact_file",
    "provision_fact_table",
    "resolve_fact_table",
]
