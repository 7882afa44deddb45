from pathlib import Path
import os
import sys
import unittest
from unittest.mock import AsyncMock, patch

SERVER_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(SERVER_DIR))

os.environ.setdefault("ANSI_STATE_TOKEN", "test-token")

from fastapi import HTTPException
from fastapi.testclient import TestClient

import main

AUTH = {"Authorization": f"Bearer {main.TOKEN}"}


class ServerTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)
        limiter = patch.object(main, "_state_limiter", main._RateLimiter(max_per_sec=1000))
        limiter.start()
        self.addCleanup(limiter.stop)

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")

    def test_rejects_wrong_token(self):
        resp = self.client.post(
            "/state",
            json={"text": "abc", "positions": [1]},
            headers={"Authorization": "Bearer nope"},
        )
        self.assertEqual(resp.status_code, 401)

    def test_state(self):
        resp = self.client.post(
            "/state",
            json={"text": "\x1b[31mred\x1b[0m", "positions": [1, None, 4]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["tags"], ["\x1b[31m", None, ""])
        self.assertEqual(
            body["offsets"],
            [{"byte": 6, "raw": 1, "ansi": 6}, None, {"byte": 13, "raw": 4, "ansi": 13}],
        )
        self.assertEqual(body["warnings"], [])

    def test_state_reports_unhandled_codes(self):
        resp = self.client.post(
            "/state",
            json={"text": "\x1b[21mX", "positions": [1]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 200)
        warnings = resp.json()["warnings"]
        self.assertEqual(len(warnings), 1)
        self.assertIn("21", warnings[0])

    def test_state_rejects_non_ascii(self):
        resp = self.client.post(
            "/state",
            json={"text": "café", "positions": [4]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 400)

    def test_state_rejects_unsorted_positions(self):
        resp = self.client.post(
            "/state",
            json={"text": "abc", "positions": [2, 1]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 422)

    def test_state_timeout(self):
        with patch.object(main, "SCAN_TIMEOUT", -1.0):
            resp = self.client.post(
                "/state",
                json={"text": "abc", "positions": [1]},
                headers=AUTH,
            )
        self.assertEqual(resp.status_code, 503)

    def test_state_scans_in_threadpool(self):
        runner = AsyncMock(wraps=main.run_in_threadpool)
        with patch.object(main, "run_in_threadpool", runner):
            resp = self.client.post(
                "/state",
                json={"text": "\x1b[1mab", "positions": [1]},
                headers=AUTH,
            )
        self.assertEqual(resp.status_code, 200)
        runner.assert_awaited_once()
        self.assertIs(runner.await_args.args[0], main.state_at_positions)

    def test_state_rejects_positions_below_one(self):
        resp = self.client.post(
            "/state",
            json={"text": "abc", "positions": [0, 1]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 422)

    def test_state_rejects_oversized_text(self):
        resp = self.client.post(
            "/state",
            json={"text": "a" * (main.MAX_TEXT + 1), "positions": [1]},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 422)

    def test_state_rejects_too_many_positions(self):
        resp = self.client.post(
            "/state",
            json={"text": "abc", "positions": list(range(1, main.MAX_POSITIONS + 2))},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 422)

    def test_state_rate_limited(self):
        with patch.object(main, "_state_limiter", main._RateLimiter(max_per_sec=1)):
            first = self.client.post(
                "/state", json={"text": "abc", "positions": [1]}, headers=AUTH
            )
            second = self.client.post(
                "/state", json={"text": "abc", "positions": [1]}, headers=AUTH
            )
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 429)

    def test_tag(self):
        resp = self.client.post(
            "/tag",
            json={"styles": ["underline", "bold"], "fg": {"rgb": [10, 20, 30]}, "bg": {"code": 4}},
            headers=AUTH,
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["tag"], "\x1b[1;4;38;2;10;20;30;44m")

    def test_tag_palette(self):
        resp = self.client.post("/tag", json={"bg": {"palette": 200}}, headers=AUTH)
        self.assertEqual(resp.json()["tag"], "\x1b[48;5;200m")

    def test_tag_rejects_unknown_style(self):
        resp = self.client.post("/tag", json={"styles": ["sparkle"]}, headers=AUTH)
        self.assertEqual(resp.status_code, 422)

    def test_tag_rejects_invalid_colors(self):
        for color in ({"code": 8}, {"code": -1}, {"palette": 256}, {"rgb": [1, 2, 300]}):
            resp = self.client.post("/tag", json={"fg": color}, headers=AUTH)
            self.assertEqual(resp.status_code, 422, color)

    def test_tag_requires_one_color_form(self):
        resp = self.client.post(
            "/tag", json={"fg": {"code": 1, "palette": 3}}, headers=AUTH
        )
        self.assertEqual(resp.status_code, 422)


class RateLimiterTests(unittest.TestCase):
    def test_limits_per_second(self):
        limiter = main._RateLimiter(max_per_sec=2)
        limiter.check()
        limiter.check()
        with self.assertRaises(HTTPException) as ctx:
            limiter.check()
        self.assertEqual(ctx.exception.status_code, 429)


if __name__ == "__main__":
    unittest.main()
