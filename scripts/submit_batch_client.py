"""Submit a reconciliation batch to the HTTP service.

Example::

    python scripts/submit_batch_client.py --catalog catalog.json \
        --paper papers/physics_june_2022_p2.pdf --markscheme papers/physics_june_2022_p2_ms.pdf
"""

import argparse
import json
import os
import sys
from pathlib import Path

import requests

try:
    from scripts.util.env import env_bool, load_env, normalize_base_url
except ImportError:  # pragma: no cover - direct execution
    sys.path.append(str(Path(__file__).resolve().parent))
    from util.env import env_bool, load_env, normalize_base_url


def build_payload(args: argparse.Namespace) -> dict:
    catalog = json.loads(Path(args.catalog).read_text()) if args.catalog else None
    payload = {
        "job_id": args.job_id,
        "principal": args.principal,
        "catalog": catalog,
        "catalog_id": args.catalog_id,
        "papers": [{"file_path": path} for path in args.paper],
        "markschemes": [{"file_path": path} for path in args.markscheme],
        "timeout_seconds": args.timeout,
        "run_async": args.run_async,
    }
    if args.duplicate_policy:
        payload["duplicate_policy"] = args.duplicate_policy
    return {key: value for key, value in payload.items() if value is not None}


def main() -> int:
    load_env()
    parser = argparse.ArgumentParser(description="Submit exam papers and markschemes for reconciliation")
    parser.add_argument("--base-url", default=os.getenv("RECONCILE_BASE_URL", "http://localhost:8080"))
    parser.add_argument("--catalog", help="Path to a catalog JSON file ({catalog_id, paper_types: [{name, topics}]})")
    parser.add_argument("--catalog-id", help="Id of a catalog already stored by the service")
    parser.add_argument("--paper", action="append", default=[], help="Exam paper path (repeatable)")
    parser.add_argument("--markscheme", action="append", default=[], help="Markscheme path (repeatable)")
    parser.add_argument("--principal", default=os.getenv("RECONCILE_PRINCIPAL"))
    parser.add_argument("--job-id")
    parser.add_argument("--timeout", type=float)
    parser.add_argument("--duplicate-policy", choices=["store_both", "reject", "overwrite"])
    parser.add_argument("--run-async", action="store_true", default=env_bool("RECONCILE_RUN_ASYNC"))
    args = parser.parse_args()

    url = f"{normalize_base_url(args.base_url)}/batches"
    response = requests.post(url, json=build_payload(args), timeout=args.timeout or 600)
    print(f"POST {url} -> {response.status_code}")
    try:
        data = response.json()
    except ValueError:
        print(response.text)
        return 1
    print(json.dumps(data, indent=2))
    if response.ok and args.run_async:
        ws_url = f"{normalize_base_url(args.base_url).replace('http', 'ws', 1)}/ws/progress/{data.get('job_id')}"
        print(f"Progress: {ws_url}")
    return 0 if response.ok else 1


if __name__ == "__main__":
    sys.exit(main())
