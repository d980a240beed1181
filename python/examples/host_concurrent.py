"""
Example: many handler invocations sharing one worker.

Simulates concurrent platform invocations with different latencies. Replies
come back in completion order and are matched to their callers by id.

python host_concurrent.py
"""

import asyncio
import sys
import os
from types import SimpleNamespace

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from linebridge import Bridge, InvocationHandler, default_pretty_handler

WORKER = os.path.join(os.path.dirname(__file__), "slow_echo_worker.py")


async def invoke(handler: InvocationHandler, n: int, delay: float):
    context = SimpleNamespace(aws_request_id=f"req-{n}", function_name="example")
    error, response = await handler.handle({"n": n, "delay": delay}, context)
    if error is not None:
        print(f"req-{n}: error - {error}")
    else:
        print(f"req-{n}: {response}")


async def main():
    async with Bridge(
        [sys.executable, WORKER],
        log_handler=default_pretty_handler,
    ) as bridge:
        handler = InvocationHandler(bridge, timeout=10)

        await asyncio.gather(
            invoke(handler, 1, 0.5),
            invoke(handler, 2, 0.1),
            invoke(handler, 3, 0.3),
        )

        print(f"\nMetrics: {bridge.metrics.to_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
