"""Run a reconciliation batch locally, or list the questions it stored.

    python scripts/run_batch.py run --catalog catalog.json --paper p2.pdf --markscheme p2_ms.pdf
    python scripts/run_batch.py questions --catalog-id physics
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

try:
    from scripts.util.env import load_env
except ImportError:  # pragma: no cover - direct execution
    sys.path.append(str(Path(__file__).resolve().parent))
    sys.path.append(str(Path(__file__).resolve().parent.parent))
    from util.env import load_env

from exam_pipeline.db.async_store import AsyncSQLAlchemyStore
from exam_pipeline.utils.types import Catalog
from exam_pipeline.workflow.events import LoggingObserver
from exam_pipeline.workflow.batch import run_batch_request
from exam_pipeline.workflow.utils.request_models import BatchRequest, batch_settings
from exam_pipeline.workflow.utils.settings import default_settings


async def _run(args: argparse.Namespace) -> int:
    catalog = json.loads(Path(args.catalog).read_text()) if args.catalog else None
    request = BatchRequest(
        catalog=catalog,
        catalog_id=args.catalog_id,
        principal=args.principal,
        papers=[{"file_path": path} for path in args.paper],
        markschemes=[{"file_path": path} for path in args.markscheme],
        timeout_seconds=args.timeout,
        duplicate_policy=args.duplicate_policy,
        date_contract=args.date_contract,
    )
    settings = batch_settings(request, default_settings(override={"db_url": args.db} if args.db else None))
    observers = [LoggingObserver()] if args.events else []
    report = await run_batch_request(request, settings, observers=observers)
    print(json.dumps(report.to_payload(), indent=2))
    return 0 if report.success else 2


async def _save_catalog(args: argparse.Namespace) -> int:
    catalog = Catalog.from_dict(json.loads(Path(args.catalog).read_text()))
    store = AsyncSQLAlchemyStore(args.db or default_settings().db_url)
    await store.init_models()
    try:
        await store.save_catalog(catalog)
    finally:
        await store.close()
    print(f"Stored catalog {catalog.catalog_id} with {len(catalog.paper_types)} paper types")
    return 0


async def _questions(args: argparse.Namespace) -> int:
    store = AsyncSQLAlchemyStore(args.db or default_settings().db_url)
    await store.init_models()
    try:
        rows = await store.load_questions(catalog_id=args.catalog_id, job_id=args.job_id)
    finally:
        await store.close()
    for row in rows:
        objectives = row["solution_objectives"]
        marker = f"{len(objectives)} objectives" if objectives is not None else "no markscheme"
        print(f"{row['storage_key']:<20} {row['paper_date']}  {marker:<16} {row['summary']}")
    print(f"{len(rows)} questions")
    return 0


def main() -> int:
    load_env()
    parser = argparse.ArgumentParser(description="Exam paper / markscheme reconciliation")
    parser.add_argument("--db", help="Database path or URL (defaults to DB_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Extract, reconcile and persist one batch")
    run.add_argument("--catalog", help="Catalog JSON file")
    run.add_argument("--catalog-id", help="Stored catalog id")
    run.add_argument("--paper", action="append", default=[])
    run.add_argument("--markscheme", action="append", default=[])
    run.add_argument("--principal")
    run.add_argument("--timeout", type=float)
    run.add_argument("--duplicate-policy", choices=["store_both", "reject", "overwrite"])
    run.add_argument("--date-contract", choices=["content", "filename"])
    run.add_argument("--events", action="store_true", help="Log every pipeline event")

    save = sub.add_parser("save-catalog", help="Store a catalog JSON file in the database")
    save.add_argument("catalog")

    questions = sub.add_parser("questions", help="List stored questions")
    questions.add_argument("--catalog-id")
    questions.add_argument("--job-id")

    args = parser.parse_args()
    handler = {"run": _run, "save-catalog": _save_catalog, "questions": _questions}[args.command]
    return asyncio.run(handler(args))


if __name__ == "__main__":
    sys.exit(main())
