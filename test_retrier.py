"""Tests for the backoff retrier and its coordination with token refresh."""

import unittest
from datetime import datetime, timedelta, timezone

import requests as rq

from fake_hubspot import FakeTokenSession, http_error, make_credentials, make_remote
from meeting_sync.cancellation import CancellationToken
from meeting_sync.errors import CredentialRefreshError, RetriesExhausted, SyncCancelled
from meeting_sync.retrier import BackoffRetrier, is_retryable_error

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class CountingOperation:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, errors=(), result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RetrierTests(unittest.TestCase):
    def setUp(self):
        self.delays = []
        self.refreshes = 0
        self.expires_at = NOW + timedelta(hours=1)

    def make_retrier(self, **options):
        options.setdefault("base_delay", 5.0)
        return BackoffRetrier(sleep=self.delays.append, clock=lambda: NOW, **options)

    def refresh(self):
        self.refreshes += 1

    def execute(self, retrier, operation):
        return retrier.execute(operation, lambda: self.expires_at, self.refresh, "meetings search")

    def test_always_failing_call_is_attempted_max_attempts_times(self):
        operation = CountingOperation(errors=[rq.exceptions.ConnectionError("down")] * 10)
        retrier = self.make_retrier(max_attempts=5)

        with self.assertRaises(RetriesExhausted) as raised:
            self.execute(retrier, operation)

        self.assertEqual(operation.calls, 5)
        self.assertEqual(raised.exception.attempts, 5)
        self.assertIsInstance(raised.exception.last_error, rq.exceptions.ConnectionError)
        # BASE_DELAY * 2 ** n before retry n, nothing after the last attempt
        self.assertEqual(self.delays, [10.0, 20.0, 40.0, 80.0])

    def test_max_attempts_is_configurable(self):
        operation = CountingOperation(errors=[rq.exceptions.Timeout("slow")] * 10)
        retrier = self.make_retrier(max_attempts=2, base_delay=1.0)

        with self.assertRaises(RetriesExhausted):
            self.execute(retrier, operation)

        self.assertEqual(operation.calls, 2)
        self.assertEqual(self.delays, [2.0])

    def test_returns_result_after_transient_failures(self):
        operation = CountingOperation(errors=[http_error(429), http_error(503)], result={"results": []})

        result = self.execute(self.make_retrier(), operation)

        self.assertEqual(result, {"results": []})
        self.assertEqual(operation.calls, 3)
        self.assertEqual(self.delays, [10.0, 20.0])

    def test_non_retryable_error_propagates_immediately(self):
        operation = CountingOperation(errors=[http_error(400)])

        with self.assertRaises(rq.exceptions.HTTPError):
            self.execute(self.make_retrier(), operation)

        self.assertEqual(operation.calls, 1)
        self.assertEqual(self.delays, [])

    def test_programming_errors_are_not_retried(self):
        operation = CountingOperation(errors=[KeyError("results")])

        with self.assertRaises(KeyError):
            self.execute(self.make_retrier(), operation)

        self.assertEqual(operation.calls, 1)

    def test_expired_credential_is_refreshed_without_using_an_attempt(self):
        self.expires_at = NOW - timedelta(seconds=1)
        operation = CountingOperation(errors=[rq.exceptions.ConnectionError("reset")])

        self.execute(self.make_retrier(max_attempts=2), operation)

        self.assertEqual(self.refreshes, 1)
        self.assertEqual(operation.calls, 2)

    def test_valid_credential_is_not_refreshed(self):
        operation = CountingOperation(errors=[http_error(502)])

        self.execute(self.make_retrier(), operation)

        self.assertEqual(self.refreshes, 0)

    def test_unauthorized_response_triggers_refresh(self):
        operation = CountingOperation(errors=[http_error(401)])

        self.execute(self.make_retrier(), operation)

        self.assertEqual(self.refreshes, 1)
        self.assertEqual(operation.calls, 2)

    def test_failed_refresh_does_not_stop_retrying(self):
        self.expires_at = NOW - timedelta(minutes=5)

        def failing_refresh():
            self.refreshes += 1
            raise CredentialRefreshError("token endpoint down")

        operation = CountingOperation(errors=[rq.exceptions.ConnectionError("x")] * 2)
        retrier = self.make_retrier()
        result = retrier.execute(operation, lambda: self.expires_at, failing_refresh, "meetings search")

        self.assertEqual(result, "ok")
        self.assertEqual(self.refreshes, 2)
        self.assertEqual(operation.calls, 3)

    def test_cancelled_pass_raises_before_calling(self):
        cancellation = CancellationToken()
        cancellation.cancel()
        operation = CountingOperation()

        with self.assertRaises(SyncCancelled):
            self.execute(self.make_retrier(cancellation=cancellation), operation)

        self.assertEqual(operation.calls, 0)

    def test_cancellation_interrupts_retry_delay(self):
        cancellation = CancellationToken()
        operation = CountingOperation(errors=[rq.exceptions.ConnectionError("x")] * 5)

        def cancel_instead_of_sleeping(seconds):
            cancellation.cancel()
            cancellation.wait(seconds)

        retrier = BackoffRetrier(cancellation=cancellation, sleep=cancel_instead_of_sleeping, clock=lambda: NOW)
        with self.assertRaises(SyncCancelled):
            self.execute(retrier, operation)

        self.assertEqual(operation.calls, 1)

    def test_rejects_empty_attempt_budget(self):
        with self.assertRaises(ValueError):
            BackoffRetrier(max_attempts=0)


class RetryableErrorTests(unittest.TestCase):
    def test_classification(self):
        self.assertTrue(is_retryable_error(rq.exceptions.ConnectionError()))
        self.assertTrue(is_retryable_error(rq.exceptions.Timeout()))
        for status_code in (401, 408, 429, 500, 502, 503, 504, 599):
            self.assertTrue(is_retryable_error(http_error(status_code)), status_code)
        for status_code in (400, 403, 404, 422):
            self.assertFalse(is_retryable_error(http_error(status_code)), status_code)
        self.assertFalse(is_retryable_error(ValueError("bad")))

    def test_token_refresh_failure_follows_its_cause(self):
        def refresh_error(cause):
            try:
                raise CredentialRefreshError("Failed to obtain access token") from cause
            except CredentialRefreshError as error:
                return error

        self.assertTrue(is_retryable_error(refresh_error(rq.exceptions.ConnectionError())))
        self.assertTrue(is_retryable_error(refresh_error(http_error(503))))
        self.assertFalse(is_retryable_error(refresh_error(http_error(400))))
        self.assertFalse(is_retryable_error(refresh_error(KeyError("access_token"))))
        self.assertFalse(is_retryable_error(CredentialRefreshError("no cause")))


class AccountRetrierTests(unittest.TestCase):
    def test_refreshes_the_account_token_in_the_store(self):
        credentials = make_credentials("123")
        remote = make_remote("123", credentials=credentials)
        tokens_seen = []

        def operation():
            tokens_seen.append(credentials.access_token("123"))
            if len(tokens_seen) == 1:
                raise http_error(401)
            return "ok"

        self.assertEqual(remote.call(operation, "meetings search"), "ok")
        self.assertEqual(tokens_seen, ["token-123", "access-1"])

    def test_token_replaced_by_another_pass_is_not_refreshed_again(self):
        session = FakeTokenSession()
        credentials = make_credentials("123", session=session)
        remote = make_remote("123", credentials=credentials)
        tokens_seen = []

        def operation():
            tokens_seen.append(credentials.access_token("123"))
            if len(tokens_seen) == 1:
                # Another pass of the same account refreshes while this request is in flight
                credentials.refresh("123")
                raise http_error(401)
            return "ok"

        self.assertEqual(remote.call(operation, "meetings search"), "ok")
        self.assertEqual(len(session.requests), 1)
        self.assertEqual(tokens_seen, ["token-123", "access-1"])

    def test_ensure_valid_retries_transient_token_failures(self):
        session = FakeTokenSession()
        session.failures.extend([rq.exceptions.Timeout("slow"), rq.exceptions.ConnectionError("reset")])
        credentials = make_credentials("123", expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc), session=session)
        delays = []

        make_remote("123", credentials=credentials, delays=delays).ensure_valid()

        self.assertEqual(credentials.access_token("123"), "access-3")
        self.assertEqual(delays, [10.0, 20.0])


if __name__ == "__main__":
    unittest.main()
