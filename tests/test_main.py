from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, Mock

from main import shutdown


class ShutdownTests(unittest.IsolatedAsyncioTestCase):
    async def test_cleanup_runs_after_bot_crash(self) -> None:
        async def crash():
            raise RuntimeError("improper token")

        task = asyncio.create_task(crash())
        await asyncio.wait({task})
        state = Mock()
        client = Mock()
        client.close = AsyncMock()

        with self.assertLogs("main", level="ERROR"):
            await shutdown(task, state, client)

        state.save.assert_called_once()
        client.close.assert_awaited_once()

    async def test_cleanup_after_cancel(self) -> None:
        task = asyncio.create_task(asyncio.sleep(3600))
        state = Mock()
        client = Mock()
        client.close = AsyncMock()

        await shutdown(task, state, client)

        self.assertTrue(task.cancelled())
        state.save.assert_called_once()
        client.close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
