from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from embedbot.state import RECENT_TOKENS_LIMIT, StateManager


class StateManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "state.json"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_add_recent_token_moves_to_front(self) -> None:
        state = StateManager(self.path)
        for token_id in (1, 2, 3):
            state.add_recent_token("chan", token_id)
        state.add_recent_token("chan", 1)

        self.assertEqual(state.get_recent_tokens("chan"), [1, 3, 2])
        self.assertTrue(state.was_recently_sent("chan", 2))
        self.assertFalse(state.was_recently_sent("other", 2))

    def test_recent_tokens_are_capped(self) -> None:
        state = StateManager(self.path)
        for token_id in range(RECENT_TOKENS_LIMIT + 10):
            state.add_recent_token("chan", token_id)

        recent = state.get_recent_tokens("chan")
        self.assertEqual(len(recent), RECENT_TOKENS_LIMIT)
        self.assertEqual(recent[0], RECENT_TOKENS_LIMIT + 9)

    def test_save_and_reload(self) -> None:
        state = StateManager(self.path)
        state.load()
        state.add_recent_token("chan", 42)
        state.set_custom("greeting", "gm")
        state.save()

        self.assertFalse(state.is_dirty())
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(payload["recentTokens"], {"chan": [42]})
        self.assertEqual(payload["version"], 1)

        reloaded = StateManager(self.path)
        reloaded.load()
        self.assertEqual(reloaded.get_recent_tokens("chan"), [42])
        self.assertEqual(reloaded.get_custom("greeting"), "gm")
        self.assertTrue(reloaded.is_loaded())

    def test_save_skips_clean_state(self) -> None:
        state = StateManager(self.path)
        state.save()

        self.assertFalse(self.path.exists())

    def test_persistence_disabled(self) -> None:
        state = StateManager(self.path, enable_persistence=False)
        state.add_recent_token("chan", 1)
        state.save()

        self.assertFalse(self.path.exists())
        self.assertEqual(state.get_recent_tokens("chan"), [1])

    def test_corrupt_file_starts_fresh(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        state = StateManager(self.path)

        with self.assertLogs("embedbot.state", level="ERROR"):
            state.load()

        self.assertEqual(state.get_state_info(), {"channel_count": 0, "total_tokens": 0})

    def test_last_random_post_timing(self) -> None:
        state = StateManager(self.path)
        self.assertTrue(state.should_post_random("chan", 600))

        state.set_last_random_post("chan", datetime.now(timezone.utc) - timedelta(seconds=100))

        remaining = state.seconds_until_next_post("chan", 600)
        self.assertTrue(490 <= remaining <= 500)
        self.assertFalse(state.should_post_random("chan", 600))
        self.assertTrue(state.should_post_random("chan", 60))

    def test_custom_values_and_clear(self) -> None:
        state = StateManager(self.path)
        state.add_recent_token("chan", 1)
        state.set_custom("k", 1)

        self.assertTrue(state.delete_custom("k"))
        self.assertFalse(state.delete_custom("k"))
        state.clear_recent_tokens("chan")
        self.assertEqual(state.get_recent_tokens("chan"), [])

        state.reset()
        self.assertFalse(state.is_dirty())
        self.assertFalse(state.is_loaded())


if __name__ == "__main__":
    unittest.main()
