#!/usr/bin/env python3
"""
Run an import job from the command line.

Claims a pending job (or, with --resume, re-claims one stuck in processing
whose worker died) and processes it in the foreground. Processing picks up at
the job's last checkpoint; rows committed after that checkpoint are processed
again, which is safe because every row write is idempotent.

Usage:
    python scripts/process_import.py <import_id>
    python scripts/process_import.py <import_id> --resume
    python scripts/process_import.py --list-stalled
"""

import argparse
import sys
import uuid
from datetime import datetime

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from rosterhub.core.config import settings
from rosterhub.core.idempotency import claim_import_job, claim_stalled_job
from rosterhub.core.logging import configure_logging
from rosterhub.db.session import SessionLocal
from rosterhub.models.import_job import JOB_PROCESSING, ImportJob
from rosterhub.services.identity_provider import get_identity_provider
from rosterhub.services.import_worker import ImportProcessor, stale_after
from rosterhub.services.notifier import get_notifier
from rosterhub.services.storage import get_storage


def list_stalled() -> int:
    db = SessionLocal()
    try:
        cutoff = datetime.utcnow() - stale_after(settings)
        jobs = (
            db.query(ImportJob)
            .filter(ImportJob.status == JOB_PROCESSING, ImportJob.updated_at < cutoff)
            .order_by(ImportJob.updated_at.asc())
            .all()
        )
        for job in jobs:
            print(f"{job.id}  {job.file_name}  {job.records_processed}/{job.total_records}  last update {job.updated_at}")
        if not jobs:
            print("No stalled imports.")
        return 0
    finally:
        db.close()


def process(import_id: uuid.UUID, resume: bool) -> int:
    db = SessionLocal()
    try:
        if resume:
            job = claim_stalled_job(db, import_id, stale_after(settings))
        else:
            job = claim_import_job(db, import_id)
        if job is None:
            state = "stalled" if resume else "pending"
            print(f"Error: import {import_id} is not {state} (already claimed, finished or unknown)")
            return 1
    finally:
        db.close()

    processor = ImportProcessor(
        SessionLocal,
        get_identity_provider(settings, SessionLocal),
        get_notifier(settings),
        get_storage(),
    )
    processor.run(import_id)

    db = SessionLocal()
    try:
        job = db.get(ImportJob, import_id)
        print("\n=== Import Summary ===")
        print(f"Status:     {job.status}")
        print(f"Processed:  {job.records_processed}/{job.total_records}")
        print(f"New:        {job.records_new}")
        print(f"Updated:    {job.records_updated}")
        print(f"Activated:  {job.records_activated}")
        print(f"Skipped:    {job.records_skipped}")
        print(f"Failed:     {job.records_failed}")
        print(f"Errors:     {len(job.errors or [])}")
        return 0 if job.status == "completed" else 1
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Process a roster import job")
    parser.add_argument("import_id", nargs="?", help="Import job id")
    parser.add_argument("--resume", action="store_true", help="Re-claim a job stuck in processing")
    parser.add_argument("--list-stalled", action="store_true", help="List jobs stuck in processing")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)

    if args.list_stalled:
        sys.exit(list_stalled())
    if not args.import_id:
        parser.error("import_id is required unless --list-stalled is given")
    try:
        import_id = uuid.UUID(args.import_id)
    except ValueError:
        parser.error(f"not a valid import id: {args.import_id}")
    sys.exit(process(import_id, args.resume))


if __name__ == "__main__":
    main()
