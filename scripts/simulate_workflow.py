#!/usr/bin/env python3
"""
Herb Traceability: drive one batch through the full lifecycle over HTTP.

    collection → processing → lab testing → regulatory review

After each step the script also checks that repeating the step is
refused (ERR_ALREADY_ACTED) and that the next portal sees the batch in
its worklist.

Usage:
    python scripts/simulate_workflow.py                        # localhost:5000, approve
    python scripts/simulate_workflow.py --decision rejected
    python scripts/simulate_workflow.py --base http://herbtrace:8080 --collection-id COL-42
"""

import argparse
import sys
import time

import requests

from herbtrace.services.demo_seed import (
    collection_payload,
    lab_payload,
    processing_payload,
    review_payload,
)

FAILURES = []


def log(step, ok, detail=""):
    icon = "✅" if ok else "❌"
    print(f"  {icon} {step}: {detail}")
    if not ok:
        FAILURES.append(step)


def api(base, method, path, data=None, role=None):
    headers = {"X-User-Id": f"sim-{role}", "X-User-Role": role} if role else {}
    try:
        r = requests.request(method, f"{base}{path}", json=data, headers=headers, timeout=10)
    except requests.RequestException as exc:
        return {"error": str(exc)}, 0
    try:
        body = r.json()
    except ValueError:
        body = {"error": r.text}
    return body, r.status_code


def in_worklist(base, role, qr_code):
    body, status = api(base, "GET", f"/api/v1/workflow/batches/{role}?accessType=view")
    return status == 200 and any(b["qrCode"] == qr_code for b in body.get("batches", []))


def main():
    parser = argparse.ArgumentParser(description="Simulate the herb batch workflow over HTTP")
    parser.add_argument("--base", default="http://localhost:5000")
    parser.add_argument("--collection-id", default=f"SIM-{int(time.time())}")
    parser.add_argument("--decision", choices=["approved", "rejected"], default="approved")
    args = parser.parse_args()

    base = args.base.rstrip("/")
    print(f"\n═══ Simulating batch {args.collection_id} against {base} ═══")

    body, status = api(base, "GET", "/api/v1/health/ledger")
    if status != 200:
        print(f"Server not reachable at {base}: {body.get('error')}")
        return 2
    print(f"  Ledger mode: {body['mode']}{' (degraded)' if body['degraded'] else ''}")

    body, status = api(base, "POST", "/api/v1/collection/events",
                       collection_payload(args.collection_id), role="farmer")
    log("collection", status == 201, f"HTTP {status}")
    if status != 201:
        return 1
    qr = body["qrCode"]

    steps = [
        ("processor", "/api/v1/processing/events", processing_payload(qr), "processed"),
        ("lab", "/api/v1/lab/events", lab_payload(qr, f"TEST-{args.collection_id}"), "tested"),
        ("regulator", "/api/v1/regulator/review", review_payload(qr, args.decision), args.decision),
    ]
    for role, path, payload, expected in steps:
        log(f"{role} sees batch", in_worklist(base, role, qr))

        body, status = api(base, "POST", path, payload, role=role)
        log(f"{role} submit", status == 201 and body.get("nextStatus") == expected,
            f"HTTP {status} → {body.get('nextStatus') or body.get('error')}")

        body, status = api(base, "POST", path, payload, role=role)
        # terminal batches answer ERR_NO_TRANSITION instead
        log(f"{role} repeat refused",
            status == 409 and body.get("code") in ("ERR_ALREADY_ACTED", "ERR_NO_TRANSITION"),
            f"HTTP {status} {body.get('code')}")

    body, status = api(base, "GET", f"/api/v1/batches/{qr}/timeline")
    log("timeline", status == 200 and body.get("total") == 4, f"{body.get('total')} events, status {body.get('status')}")

    print(f"\n{'All steps passed' if not FAILURES else f'{len(FAILURES)} step(s) failed'}")
    return 1 if FAILURES else 0


if __name__ == "__main__":
    sys.exit(main())
