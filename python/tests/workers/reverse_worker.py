#!/usr/bin/env python3
"""Buffers requests in pairs and answers each pair newest-first in one write."""

import json
import sys


def reply(msg):
    return json.dumps({"id": msg["id"], "payload": {"y": msg["payload"]["x"]}}) + "\n"


def main():
    pending = None
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        msg = json.loads(line)
        if pending is None:
            pending = msg
            continue
        # Both frames leave in a single write
        sys.stdout.write(reply(msg) + reply(pending))
        sys.stdout.flush()
        pending = None


if __name__ == "__main__":
    main()
