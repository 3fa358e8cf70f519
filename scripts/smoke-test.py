#!/usr/bin/env python3
"""
Smoke test for powshield deployments.

Flow (default):
1. Health check
2. Challenge request
3. Local PoW solve + POST /verify
4. Token accepted by POST /protected
5. Replayed solution refused with REPLAY

A shadow-throttled verify (e.g. the deployment is already suspicious of this
runner) is reported and ends the run without failing it, since it is a valid
protocol outcome.

Usage:
    ./scripts/smoke-test.py https://staging.example.com
    ./scripts/smoke-test.py https://staging.example.com --health-only
"""

import argparse
import hashlib
import json
import secrets
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_SOLVE_ITERATIONS = 50_000_000
# Used when surfacing API error bodies for debugging without log spam.
MAX_ERROR_BODY_CHARS = 2_000

SMOKE_SIGNALS = {
    "ua": "Mozilla/5.0 (X11; Linux x86_64) powshield-smoke",
    "cpu": 4,
    "memory": 8,
    "webdriver": False,
    "worker_integrity": True,
    "timing_drift": 250.0,
}


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def api_json(self, method: str, path: str, data: dict[str, Any] | None = None) -> dict:
        body = json.dumps(data).encode() if data is not None else None
        request = Request(
            f"{self.base_url}{path}",
            data=body,
            headers={"Content-Type": "application/json", "User-Agent": SMOKE_SIGNALS["ua"]},
            method=method,
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise ApiError(e.code, error_body[:MAX_ERROR_BODY_CHARS]) from e
        except URLError as e:
            raise RuntimeError(f"Network error on {method} {path}: {e}") from e


def solve(identity: str, nonce: str, difficulty: int) -> tuple[int, str]:
    prefix = "0" * difficulty
    for counter in range(MAX_SOLVE_ITERATIONS):
        digest = hashlib.sha256(f"{identity}{nonce}{counter}".encode()).hexdigest()
        if digest.startswith(prefix):
            return counter, digest
    raise RuntimeError("Failed to solve PoW within iteration limit")


def step_health(client: HttpClient) -> None:
    log("Checking /health")
    health = client.api_json("GET", "/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")
    log(f"Healthy, secret version {health.get('secret_version')}")


def step_full_flow(client: HttpClient) -> None:
    identity = f"smoke-{secrets.token_hex(8)}"

    log("Requesting challenge")
    challenge = client.api_json("POST", "/challenge", {"identity": identity})
    log(f"Solving at difficulty {challenge['difficulty']}")
    counter, digest = solve(identity, challenge["nonce"], challenge["difficulty"])

    submission = {
        "identity": identity,
        "nonce": challenge["nonce"],
        "counter": counter,
        "hash": digest,
        "signals": SMOKE_SIGNALS,
    }
    log("Submitting solution")
    result = client.api_json("POST", "/verify", submission)
    if result.get("status") == "shadow_throttled":
        log("Verify was shadow-throttled; skipping token checks")
        return
    if "signature" not in result:
        raise RuntimeError(f"Verify returned neither token nor throttle: {result}")

    log("Using token on /protected")
    access = client.api_json(
        "POST",
        "/protected",
        {"payload": result["payload"], "signature": result["signature"], "identity": identity},
    )
    if access.get("success") is not True:
        raise RuntimeError(f"Protected resource refused a fresh token: {access}")

    log("Replaying solution")
    try:
        client.api_json("POST", "/verify", submission)
    except ApiError as e:
        if e.status_code == 403 and "REPLAY" in e.body:
            return
        raise
    raise RuntimeError("Replayed solution was accepted")


def main() -> int:
    parser = argparse.ArgumentParser(description="powshield smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://staging.example.com)")
    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Only run health check, skip full flow",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT_SECONDS})",
    )
    args = parser.parse_args()

    client = HttpClient(base_url=args.base_url.rstrip("/"), timeout_seconds=args.timeout)

    try:
        step_health(client)
        if not args.health_only:
            step_full_flow(client)
    except (ApiError, RuntimeError, KeyError) as e:
        log(f"FAILED: {e}")
        return 1

    log("Smoke test passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
