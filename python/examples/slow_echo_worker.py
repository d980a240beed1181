"""
Example: a worker that answers requests out of order.

Each request sleeps for payload["delay"] seconds before echoing back, so a
slow request does not hold up the ones behind it.

Run by host_concurrent.py; not meant to be started by hand.
"""

import asyncio
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from linebridge import StreamWorker


class SlowEchoWorker(StreamWorker):
    async def handle(self, payload, context):
        await asyncio.sleep(payload.get("delay", 0))
        print(f"handled {payload}")  # ends up on stderr
        return {"echo": payload, "request": context.get("awsRequestId")}


if __name__ == "__main__":
    SlowEchoWorker().run()
