"""
MediaNest API: Python client example.

Demonstrates:
  1. Register an uploaded item.
  2. Play the worker: report Processing, Completed and detections.
  3. Poll the cached status until the item is terminal.
  4. Read the detections back.

Requirements:
  pip install requests        # or: uv add requests

Usage:
  python examples/python/client.py
"""

from __future__ import annotations

import time
from typing import Any

import requests

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

API_BASE = "http://localhost:8000/api/v1"
POLL_INTERVAL = 2  # seconds between status checks
POLL_TIMEOUT = 120  # give up after N seconds
TERMINAL = ("Completed", "Failed")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def register_item(payload: dict[str, Any]) -> dict[str, Any]:
    """POST /items and return the response dict.

    Args:
        payload: Request body with ``locator`` and optional
            ``title`` / ``description``.

    Returns:
        Parsed JSON response containing ``id`` and ``status``.

    Raises:
        requests.HTTPError: On non-2xx responses (``503`` when the
            job could not be enqueued).
    """
    resp = requests.post(f"{API_BASE}/items", json=payload, timeout=30)
    resp.raise_for_status()
    return resp.json()


def report_status(item_id: int, status: str, **extra: Any) -> dict[str, Any]:
    """PUT /items/{id}/status as the worker would."""
    resp = requests.put(
        f"{API_BASE}/items/{item_id}/status",
        json={"status": status, **extra},
        timeout=10,
    )
    resp.raise_for_status()
    return resp.json()


def report_results(item_id: int, results: list[dict[str, Any]]) -> int:
    """POST /items/{id}/results and return the accepted count."""
    resp = requests.post(
        f"{API_BASE}/items/{item_id}/results",
        json={"results": results},
        timeout=10,
    )
    resp.raise_for_status()
    return resp.json()["accepted"]


def poll_status(item_id: int) -> dict[str, Any]:
    """Poll GET /items/{id}/status until Completed or Failed.

    Args:
        item_id: Id returned by ``register_item``.

    Returns:
        The final status response dict.

    Raises:
        TimeoutError: If the item is not terminal within POLL_TIMEOUT.
        requests.HTTPError: On non-2xx responses.
    """
    deadline = time.monotonic() + POLL_TIMEOUT
    while time.monotonic() < deadline:
        resp = requests.get(f"{API_BASE}/items/{item_id}/status", timeout=10)
        resp.raise_for_status()
        data = resp.json()
        status = data.get("status", "")
        print(f"  [item {item_id}] status={status} cached={data.get('cached')}")
        if status in TERMINAL:
            return data
        time.sleep(POLL_INTERVAL)
    raise TimeoutError(f"Item {item_id} did not finish within {POLL_TIMEOUT}s")


# ---------------------------------------------------------------------------
# Examples
# ---------------------------------------------------------------------------


def example_full_flow() -> None:
    """Register a clip, process it by hand and read the detections."""
    print("\n── Upload and process ───────────────────────────")
    created = register_item(
        {
            "title": "Warehouse walkthrough",
            "description": "Handheld camera, aisle 4 to 9",
            "locator": "/media/uploads/walkthrough.mp4",
        }
    )
    item_id = created["id"]
    print(f"Registered: id={item_id} status={created['status']}")

    report_status(item_id, "Processing")
    report_status(item_id, "Completed", duration=42)
    accepted = report_results(
        item_id,
        [
            {"content": "PALLET-0017", "offset": 10},
            {"content": "PALLET-0017", "offset": 10},
            {"content": "PALLET-0042", "offset": 20},
        ],
    )
    print(f"Worker reported {accepted} unique detections")

    final = poll_status(item_id)
    print(f"Done: status={final['status']} duration={final['duration']}s")

    resp = requests.get(f"{API_BASE}/items/{item_id}/results", timeout=10)
    resp.raise_for_status()
    for entry in resp.json()["results"]:
        print(f"  {entry['offset']:>4}s  {entry['content']}")


def example_failure() -> None:
    """Report a worker failure with a reason."""
    print("\n── Worker failure ───────────────────────────────")
    item_id = register_item({"locator": "/media/uploads/broken.mp4"})["id"]
    report_status(item_id, "Failed", error_message="Unsupported codec")

    resp = requests.get(f"{API_BASE}/items/{item_id}", timeout=10)
    resp.raise_for_status()
    record = resp.json()
    print(f"Item {item_id}: {record['status']} ({record['error_message']})")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    example_full_flow()
    example_failure()
