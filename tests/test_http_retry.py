from __future__ import annotations

import itertools
import unittest

import requests

from hazard_ingest.config import RetryPolicy
from hazard_ingest.providers.exceptions import (
    ClientError,
    FetchError,
    NetworkError,
    RateLimited,
    ServerError,
)
from hazard_ingest.providers.http import build_http_session, fetch_with_retry, redact_tokens
from tests._helpers import FakeHttpSession, make_response, make_settings, sequence_handler


URL = "https://graph.mapillary.test/images?access_token=secret123&limit=10"
POLICY = RetryPolicy(max_attempts=5, base_delay_seconds=2.0, max_delay_seconds=60.0, timeout_seconds=120.0)


class FetchWithRetryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps: list[float] = []

    def _fetch(self, session: FakeHttpSession, **kwargs) -> requests.Response:
        return fetch_with_retry(session, URL, policy=POLICY, sleep=self.sleeps.append, **kwargs)

    def test_first_success_returns_without_waiting(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200, {"ok": True})))

        response = self._fetch(session)

        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(len(session.calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_passes_per_attempt_timeout(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(200)))

        self._fetch(session)

        _, _, kwargs = session.calls[0]
        self.assertEqual(kwargs["timeout"], 120.0)
        self.assertTrue(kwargs["stream"])
        self.assertIn("User-Agent", kwargs["headers"])

    def test_server_errors_then_success_takes_n_plus_one_attempts(self) -> None:
        session = FakeHttpSession(
            sequence_handler(
                make_response(500),
                make_response(502),
                make_response(503),
                make_response(200, {"data": []}),
            )
        )

        response = self._fetch(session)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(session.calls), 4)
        self.assertEqual(self.sleeps, [2.0, 4.0, 8.0])

    def test_server_errors_beyond_budget_raise_server_error(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(503)))

        with self.assertRaises(ServerError) as ctx:
            self._fetch(session, max_attempts=3)

        self.assertEqual(len(session.calls), 3)
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.attempts, 3)
        # no wait after the final attempt
        self.assertEqual(self.sleeps, [2.0, 4.0])

    def test_retry_after_header_overrides_backoff(self) -> None:
        session = FakeHttpSession(
            sequence_handler(
                make_response(429, headers={"Retry-After": "3"}),
                make_response(200),
            )
        )

        self._fetch(session)

        self.assertEqual(len(session.calls), 2)
        self.assertEqual(len(self.sleeps), 1)
        self.assertGreaterEqual(self.sleeps[0], 3.0)

    def test_rate_limit_without_header_uses_backoff(self) -> None:
        session = FakeHttpSession(
            sequence_handler(make_response(429), make_response(429), make_response(200))
        )

        self._fetch(session)

        self.assertEqual(self.sleeps, [2.0, 4.0])

    def test_non_numeric_retry_after_falls_back_to_backoff(self) -> None:
        session = FakeHttpSession(
            sequence_handler(
                make_response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
                make_response(200),
            )
        )

        self._fetch(session)

        self.assertEqual(self.sleeps, [2.0])

    def test_persistent_rate_limit_raises_rate_limited(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(429, headers={"Retry-After": "1"})))

        with self.assertRaises(RateLimited) as ctx:
            self._fetch(session, max_attempts=2)

        self.assertEqual(len(session.calls), 2)
        self.assertEqual(ctx.exception.status_code, 429)

    def test_client_error_is_not_retried(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(404), make_response(200)))

        with self.assertRaises(ClientError) as ctx:
            self._fetch(session)

        self.assertEqual(len(session.calls), 1)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(self.sleeps, [])

    def test_network_error_is_retried(self) -> None:
        session = FakeHttpSession(
            sequence_handler(requests.ConnectionError("connection reset"), make_response(200))
        )

        response = self._fetch(session)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.sleeps, [2.0])

    def test_timeouts_exhaust_into_network_error(self) -> None:
        session = FakeHttpSession(sequence_handler(requests.Timeout("read timed out")))

        with self.assertRaises(NetworkError) as ctx:
            self._fetch(session, max_attempts=2)

        self.assertEqual(len(session.calls), 2)
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn("read timed out", ctx.exception.last_error)

    def test_broken_body_transfer_is_retried(self) -> None:
        session = FakeHttpSession(
            sequence_handler(
                requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead"),
                make_response(200, {"data": []}),
            )
        )

        response = self._fetch(session)

        self.assertEqual(response.json(), {"data": []})
        self.assertEqual(self.sleeps, [2.0])

    def test_any_transport_error_exhausts_into_network_error(self) -> None:
        session = FakeHttpSession(
            sequence_handler(requests.exceptions.ContentDecodingError("incorrect header check"))
        )

        with self.assertRaises(NetworkError) as ctx:
            self._fetch(session, max_attempts=3)

        self.assertEqual(len(session.calls), 3)
        self.assertIn("ContentDecodingError", ctx.exception.last_error)

    def test_slow_body_hits_wall_clock_deadline(self) -> None:
        # every clock read advances 100s against a 120s budget
        ticks = itertools.count(0, 100)
        session = FakeHttpSession(sequence_handler(make_response(200, {"data": []})))

        with self.assertRaises(NetworkError) as ctx:
            fetch_with_retry(
                session,
                URL,
                policy=POLICY,
                max_attempts=2,
                sleep=self.sleeps.append,
                clock=lambda: float(next(ticks)),
            )

        self.assertEqual(len(session.calls), 2)
        self.assertIn("deadline", ctx.exception.last_error)
        self.assertEqual(self.sleeps, [2.0])

    def test_unfollowed_redirect_is_not_a_client_error(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(304), make_response(200)))

        with self.assertRaises(FetchError) as ctx:
            self._fetch(session)

        self.assertNotIsInstance(ctx.exception, ClientError)
        self.assertEqual(ctx.exception.status_code, 304)
        self.assertEqual(len(session.calls), 1)

    def test_backoff_is_capped(self) -> None:
        policy = RetryPolicy(max_attempts=6, base_delay_seconds=2.0, max_delay_seconds=10.0)
        session = FakeHttpSession(sequence_handler(make_response(500)))

        with self.assertRaises(ServerError):
            fetch_with_retry(session, URL, policy=policy, sleep=self.sleeps.append)

        self.assertEqual(self.sleeps, [2.0, 4.0, 8.0, 10.0, 10.0])

    def test_error_message_redacts_access_token(self) -> None:
        session = FakeHttpSession(sequence_handler(make_response(403)))

        with self.assertRaises(ClientError) as ctx:
            self._fetch(session)

        msg = str(ctx.exception)
        self.assertIn("access_token=<redacted>", msg)
        self.assertNotIn("secret123", msg)

    def test_redact_tokens_leaves_other_params(self) -> None:
        self.assertEqual(
            redact_tokens("https://x.test/a?access_token=abc&limit=5"),
            "https://x.test/a?access_token=<redacted>&limit=5",
        )


class BuildHttpSessionTests(unittest.TestCase):
    def test_connection_pool_matches_detection_fan_out(self) -> None:
        with build_http_session(make_settings(detection_batch_size=7)) as session:
            adapter = session.get_adapter("https://graph.mapillary.test/images")

            self.assertEqual(adapter._pool_maxsize, 7)  # pylint: disable=protected-access


if __name__ == "__main__":
    unittest.main()
