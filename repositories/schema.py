# -*- coding: utf-8 -*-
"""
Pipeline database schema.

Pipeline tables are declared here directly. Staging and production tables
are generated from the entity family descriptors in ``models.staging`` so
the columns always match the dataclasses.

Types are kept portable between SQLite and PostgreSQL: identifiers and
timestamps are TEXT (ISO-8601), booleans are 0/1 integers.
"""

from typing import List

from models.staging import FAMILIES, EntityFamily
from repositories.db_adapter import DatabaseType
from utils.logger import get_logger

logger = get_logger(__name__)


_PIPELINE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS import_packages (
        id TEXT PRIMARY KEY,
        package_id TEXT NOT NULL UNIQUE,
        package_number TEXT NOT NULL,
        file_name TEXT,
        file_size_bytes {int} DEFAULT 0,
        file_path TEXT,
        created_utc TEXT,
        exported_date_utc TEXT,
        exported_by_user_id TEXT,
        device_id TEXT,
        app_version TEXT,
        status TEXT NOT NULL,
        checksum TEXT,
        digital_signature TEXT,
        is_checksum_valid INTEGER DEFAULT 0,
        is_signature_valid INTEGER DEFAULT 0,
        schema_version TEXT,
        form_schema_version TEXT,
        is_schema_valid INTEGER DEFAULT 0,
        survey_count INTEGER DEFAULT 0,
        building_count INTEGER DEFAULT 0,
        property_unit_count INTEGER DEFAULT 0,
        person_count INTEGER DEFAULT 0,
        household_count INTEGER DEFAULT 0,
        relation_count INTEGER DEFAULT 0,
        claim_count INTEGER DEFAULT 0,
        document_count INTEGER DEFAULT 0,
        total_attachment_size_bytes {int} DEFAULT 0,
        vocabulary_versions TEXT,
        is_vocabulary_compatible INTEGER DEFAULT 1,
        is_vocabulary_fully_compatible INTEGER DEFAULT 1,
        vocabulary_compatibility_issues TEXT,
        validation_error_count INTEGER DEFAULT 0,
        validation_warning_count INTEGER DEFAULT 0,
        validation_errors TEXT,
        validation_warnings TEXT,
        validation_started_at TEXT,
        validation_completed_at TEXT,
        person_duplicate_count INTEGER DEFAULT 0,
        property_duplicate_count INTEGER DEFAULT 0,
        conflict_count INTEGER DEFAULT 0,
        are_conflicts_resolved INTEGER DEFAULT 0,
        successful_import_count INTEGER DEFAULT 0,
        failed_import_count INTEGER DEFAULT 0,
        skipped_import_count INTEGER DEFAULT 0,
        import_summary TEXT,
        failed_entity_ids TEXT,
        error_message TEXT,
        error_log TEXT,
        archive_path TEXT,
        is_archived INTEGER DEFAULT 0,
        archived_date TEXT,
        processing_notes TEXT,
        import_method TEXT,
        imported_date TEXT,
        imported_by_user_id TEXT,
        commit_started_at TEXT,
        committed_date TEXT,
        committed_by_user_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_import_packages_status ON import_packages(status)",
    """
    CREATE TABLE IF NOT EXISTS conflict_resolutions (
        id TEXT PRIMARY KEY,
        conflict_number TEXT NOT NULL,
        import_package_id TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        conflict_type TEXT NOT NULL,
        first_entity_id TEXT NOT NULL,
        second_entity_id TEXT NOT NULL,
        first_entity_identifier TEXT,
        second_entity_identifier TEXT,
        is_second_committed INTEGER DEFAULT 0,
        pair_key TEXT NOT NULL,
        similarity_score {real} DEFAULT 0,
        confidence_level TEXT,
        conflict_description TEXT,
        matching_criteria TEXT,
        status TEXT NOT NULL,
        resolution_action TEXT,
        priority TEXT,
        assigned_to_user_id TEXT,
        assigned_date TEXT,
        target_resolution_hours INTEGER,
        detected_date TEXT NOT NULL,
        resolved_date TEXT,
        resolved_by_user_id TEXT,
        resolution_reason TEXT,
        resolution_notes TEXT,
        merged_entity_id TEXT,
        discarded_entity_id TEXT,
        is_escalated INTEGER DEFAULT 0,
        escalation_reason TEXT,
        escalated_date TEXT,
        escalated_by_user_id TEXT,
        review_attempt_count INTEGER DEFAULT 0,
        is_auto_detected INTEGER DEFAULT 1,
        UNIQUE (import_package_id, pair_key)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conflicts_package_status ON conflict_resolutions(import_package_id, status)",
    """
    CREATE TABLE IF NOT EXISTS building_assignments (
        id TEXT PRIMARY KEY,
        building_id TEXT NOT NULL,
        field_collector_id TEXT NOT NULL,
        assigned_by_user_id TEXT,
        assigned_date TEXT NOT NULL,
        transfer_status TEXT NOT NULL,
        transfer_retry_count INTEGER DEFAULT 0,
        last_transfer_attempt_date TEXT,
        next_retry_at TEXT,
        transfer_error_message TEXT,
        transferred_to_tablet_date TEXT,
        synchronized_from_tablet_date TEXT,
        is_revisit INTEGER DEFAULT 0,
        original_assignment_id TEXT,
        units_for_revisit TEXT,
        revisit_reason TEXT,
        priority TEXT,
        is_active INTEGER DEFAULT 1,
        total_property_units INTEGER DEFAULT 0,
        completed_property_units INTEGER DEFAULT 0,
        transferred_units INTEGER DEFAULT 0,
        notes TEXT,
        modified_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_assignments_collector ON building_assignments(field_collector_id, transfer_status)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_building ON building_assignments(building_id)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_parent ON building_assignments(original_assignment_id)",
    """
    CREATE TABLE IF NOT EXISTS vocabulary_versions (
        domain TEXT PRIMARY KEY,
        version TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vocabulary_codes (
        domain TEXT NOT NULL,
        code INTEGER NOT NULL,
        label TEXT,
        PRIMARY KEY (domain, code)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id TEXT PRIMARY KEY,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        action TEXT NOT NULL,
        actor_id TEXT,
        details TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id)",
]


def _column_type(kind: str, db_type: DatabaseType) -> str:
    if kind == "int":
        return "BIGINT" if db_type == DatabaseType.POSTGRESQL else "INTEGER"
    if kind == "float":
        return "DOUBLE PRECISION" if db_type == DatabaseType.POSTGRESQL else "REAL"
    if kind == "bool":
        return "INTEGER"
    return "TEXT"


def staging_table_ddl(family: EntityFamily, db_type: DatabaseType) -> List[str]:
    columns = [
        "id TEXT PRIMARY KEY",
        "import_package_id TEXT NOT NULL",
        "original_entity_id TEXT NOT NULL",
        "validation_status TEXT NOT NULL",
        "validation_errors TEXT",
        "validation_warnings TEXT",
        "is_approved_for_commit INTEGER DEFAULT 0",
        "committed_entity_id TEXT",
        "staged_at_utc TEXT NOT NULL",
    ]
    for f in family.record_class.data_fields():
        columns.append(f"{f.name} {_column_type(f.metadata.get('kind', 'str'), db_type)}")

    table = family.staging_table
    body = ",\n        ".join(columns)
    return [
        f"CREATE TABLE IF NOT EXISTS {table} (\n        {body}\n    )",
        f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_original "
        f"ON {table}(import_package_id, original_entity_id)",
        f"CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table}(import_package_id, validation_status)",
    ]


def production_table_ddl(family: EntityFamily, db_type: DatabaseType) -> List[str]:
    columns = ["id TEXT PRIMARY KEY"]
    renames = {fk.field: fk.production_column for fk in family.foreign_keys}
    for f in family.record_class.data_fields():
        if f.name == "attachment_path":
            continue
        name = renames.get(f.name, f.name)
        columns.append(f"{name} {_column_type(f.metadata.get('kind', 'str'), db_type)}")
    columns += [
        "attachment_path TEXT" if family.name == "evidence" else None,
        "source_package_id TEXT",
        "source_original_id TEXT",
        "created_at TEXT NOT NULL",
        "created_by TEXT",
    ]
    table = family.production_table
    body = ",\n        ".join(c for c in columns if c)
    statements = [
        f"CREATE TABLE IF NOT EXISTS {table} (\n        {body}\n    )",
        f"CREATE INDEX IF NOT EXISTS idx_{table}_source ON {table}(source_package_id, source_original_id)",
    ]
    if family.name == "building":
        statements.append(f"CREATE INDEX IF NOT EXISTS idx_{table}_code ON {table}(building_code)")
    if family.name == "person":
        statements.append(f"CREATE INDEX IF NOT EXISTS idx_{table}_national_id ON {table}(national_id)")
    return statements


def schema_statements(db_type: DatabaseType) -> List[str]:
    """All DDL statements in creation order."""
    statements = [sql.format(int=_column_type("int", db_type), real=_column_type("float", db_type))
                  for sql in _PIPELINE_TABLES]
    for family in FAMILIES.values():
        statements.extend(staging_table_ddl(family, db_type))
        statements.extend(production_table_ddl(family, db_type))
    return statements


def create_schema(cursor, db_type: DatabaseType) -> None:
    """Create all pipeline, staging and production tables (idempotent)."""
    statements = schema_statements(db_type)
    for sql in statements:
        cursor.execute(sql)
    logger.debug(f"Schema ensured ({len(statements)} statements, {db_type.value})")
