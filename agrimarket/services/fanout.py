# agrimarket/services/fanout.py
import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    asyncio.gather that tears the whole batch down on the first failure:
    siblings still running are cancelled and awaited before the error
    propagates, so no store call outlives the request.
    """
    tasks = [asyncio.ensure_future(a) for a in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            if not t.done():
                t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
