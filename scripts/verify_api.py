"""Smoke test against a running server:  uvicorn rfiv.main:app --port 8000"""
import sys
import time

import requests

BASE_URL = "http://127.0.0.1:8000/v1"


def check(label, response, expected):
    ok = response.status_code == expected
    mark = "✅" if ok else "❌"
    body = response.text if response.content else "<no body>"
    print(f"{mark} [{label}] {response.status_code} (expected {expected}) {body}")
    return ok


def main():
    suffix = str(int(time.time()))
    pid, tag = f"verify-{suffix}", f"tag-{suffix}"
    results = []

    try:
        results.append(check("create", requests.post(
            f"{BASE_URL}/patient", json={"name": "Verify Patient", "id": pid, "tagId": tag}), 204))
    except requests.ConnectionError as e:
        print(f"❌ Connection Failed: {e}")
        return 1

    results.append(check("duplicate id", requests.post(
        f"{BASE_URL}/patient", json={"name": "Other", "id": pid, "tagId": tag + "-x"}), 400))
    results.append(check("search", requests.get(
        f"{BASE_URL}/patients", params={"name": "verify"}), 200))
    results.append(check("get", requests.get(f"{BASE_URL}/patient/{pid}"), 200))
    results.append(check("update", requests.put(
        f"{BASE_URL}/patient/{pid}", json={"name": "Verify Patient Renamed"}), 204))

    now_ms = int(time.time() * 1000)
    results.append(check("ping", requests.post(
        f"{BASE_URL}/patient/{tag}/location", json={"timestamp": now_ms, "location": "lobby"}), 204))
    results.append(check("repeat ping", requests.post(
        f"{BASE_URL}/patient/{tag}/location", json={"timestamp": now_ms + 50, "location": "lobby"}), 405))

    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
