"""Print Redis connectivity and a summary of the persisted queue."""

import json
import os
from collections import Counter

import redis

url = os.environ.get("MEDIARELAY_REDIS_URL", "redis://localhost:6379/0")
queue_key = os.environ.get("MEDIARELAY_QUEUE_STATE_KEY", "mediarelay:queue")
processed_key = os.environ.get("MEDIARELAY_PROCESSED_URLS_KEY", "mediarelay:processed")
print(f"Checking Redis at: {url}")

try:
    r = redis.from_url(url, decode_responses=True)
    print(f"Ping response: {r.ping()}")
    raw = r.get(queue_key)
    items = json.loads(raw) if raw else []
    counts = Counter(item.get("status", "?") for item in items)
    print(f"Queue {queue_key}: {len(items)} item(s) {dict(counts)}")
    for item in items:
        if item.get("status") == "failed":
            print(f"  failed: {item['video']['title']}: {item.get('error')}")
    print(f"Processed URLs ({processed_key}): {r.scard(processed_key)}")
except redis.exceptions.AuthenticationError:
    print("AUTH REQUIRED (AuthenticationError)")
except redis.exceptions.RedisError as e:
    print(f"ERROR: {e}")
