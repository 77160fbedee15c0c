#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
TRRCMS - Field Package Import & Sync Pipeline
Command-line entry point

نظام تسجيل حقوق الحيازة وإدارة المطالبات
خط استيراد حزم البيانات الميدانية

Usage:
    python main.py init-db
    python main.py import path/to/package.uhc --user USER_ID
    python main.py status PACKAGE_ID
    python main.py approve PACKAGE_ID [--exclude-invalid]
    python main.py resolve CONFLICT_ID MERGE --keep ENTITY_ID
    python main.py commit PACKAGE_ID
    python main.py cancel PACKAGE_ID --reason "..."
    python main.py cleanup --days 30
"""

import argparse
import json
import sys

from app.config import Config, PipelineSettings
from repositories.db_adapter import get_database
from services.exceptions import PipelineException
from services.import_pipeline import ImportPipeline
from services.vocabulary_service import ApiVocabularyService, DatabaseVocabularyService
from utils.logger import setup_logger

SYSTEM_USER = "system"


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trrcms-import", description=Config.APP_TITLE)
    parser.add_argument("--vocab", choices=("db", "api"), default="db",
                        help="Vocabulary source (local tables or backend API)")
    parser.add_argument("--user", default=SYSTEM_USER, help="Acting user id")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create tables and seed vocabularies")
    init_db.add_argument("--overwrite-vocab", action="store_true")

    imp = sub.add_parser("import", help="Upload, stage and validate a package")
    imp.add_argument("file")

    status = sub.add_parser("status", help="Package report")
    status.add_argument("package_id")

    approve = sub.add_parser("approve", help="Approve valid records for commit")
    approve.add_argument("package_id")
    approve.add_argument("--exclude-invalid", action="store_true")

    resolve = sub.add_parser("resolve", help="Resolve a conflict")
    resolve.add_argument("conflict_id")
    resolve.add_argument("action", help="KeepBoth, KeepFirst, KeepSecond, Merge, MarkAsDuplicate, Ignored, Escalate")
    resolve.add_argument("--keep", help="Surviving entity id (Merge)")
    resolve.add_argument("--reason", default="")

    commit = sub.add_parser("commit", help="Commit a ReadyToCommit package")
    commit.add_argument("package_id")
    commit.add_argument("--cleanup-staging", action="store_true")

    cancel = sub.add_parser("cancel", help="Cancel a package")
    cancel.add_argument("package_id")
    cancel.add_argument("--reason", required=True)

    cleanup = sub.add_parser("cleanup", help="Drop staged rows of finished packages")
    cleanup.add_argument("--days", type=int, default=None)

    return parser


def run(args, db) -> int:
    # CREATE IF NOT EXISTS: safe on an existing database
    db.initialize()
    if args.command == "init-db":
        seeded = DatabaseVocabularyService(db).seed_defaults(overwrite=args.overwrite_vocab)
        _print({"initialized": True, "vocabularies_seeded": seeded})
        return 0

    vocabulary = ApiVocabularyService() if args.vocab == "api" else DatabaseVocabularyService(db)
    pipeline = ImportPipeline(db, vocabulary, PipelineSettings.from_config())

    if args.command == "import":
        upload = pipeline.upload(args.file, args.user)
        output = {"upload": upload.to_dict()}
        if not upload.is_duplicate and not upload.is_quarantined and upload.package.is_schema_valid \
                and upload.package.is_checksum_valid and upload.package.is_signature_valid:
            output["validation"] = pipeline.stage_and_validate(upload.package.id, args.user).to_dict()
            output["status"] = pipeline.get_package(upload.package.id).status.value
        _print(output)
    elif args.command == "status":
        _print(pipeline.get_package_report(args.package_id))
    elif args.command == "approve":
        _print(pipeline.approve(args.package_id, args.user, exclude_invalid=args.exclude_invalid))
    elif args.command == "resolve":
        conflict = pipeline.resolve_conflict(args.conflict_id, args.action, args.user,
                                             merge_target=args.keep, reason=args.reason)
        _print(conflict.to_dict())
    elif args.command == "commit":
        report = pipeline.commit(args.package_id, args.user, cleanup_staging=args.cleanup_staging)
        _print(report.to_dict())
        return 0 if report.succeeded else 1
    elif args.command == "cancel":
        _print(pipeline.cancel(args.package_id, args.user, args.reason).to_dict())
    elif args.command == "cleanup":
        result = pipeline.cleanup(args.days)
        _print({"packages": result.packages, "records_removed": result.records_removed,
                "files_removed": result.files_removed})
    return 0


def main(argv=None) -> int:
    """Main application entry point."""
    logger = setup_logger()
    args = build_parser().parse_args(argv)

    logger.info("=" * 80)
    logger.info(f"{Config.APP_NAME} {Config.VERSION}: {args.command}")
    logger.info("=" * 80)

    db = get_database()
    try:
        return run(args, db)
    except PipelineException as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
