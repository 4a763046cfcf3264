"""
Content-mutation collaborator: HTTP client and background dispatcher.

Requests run on a worker pool. The scheduling path only submits and moves
on; failures come back through a callback and never touch card state.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

import httpx
from loguru import logger

from src.core.errors import MutationRequestFailed
from src.practice.mutation import MutationRequest, MutationResult


class MutationClient(Protocol):
    def request_mutation(self, request: MutationRequest) -> MutationResult: ...


class HttpMutationClient:
    """HTTP client for the content-mutation service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize mutation client.

        Args:
            api_url: Base URL for the mutation API
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts on timeouts and 5xx errors
            backoff_seconds: First retry delay; doubles on each retry
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.client = httpx.Client(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def request_mutation(self, request: MutationRequest) -> MutationResult:
        """
        Ask the service for a mutated problem statement.

        Raises:
            MutationRequestFailed: On a 4xx response, a malformed body, or when
                retries are exhausted
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(f"{self.api_url}/mutations", json=request.to_dict())
                response.raise_for_status()
                result = MutationResult.from_dict(response.json(), attempt_id=request.attempt_id)
                if not result.description:
                    raise MutationRequestFailed(request.problem_id, "empty mutation description")
                return result

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    # Don't retry on 4xx client errors
                    logger.error(f"Mutation service client error: {e.response.status_code}")
                    raise MutationRequestFailed(
                        request.problem_id, f"HTTP {e.response.status_code}"
                    ) from e
                logger.warning(
                    f"Mutation service error {e.response.status_code} on attempt "
                    f"{attempt + 1}/{self.retry_attempts}"
                )

            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                logger.warning(
                    f"Mutation request error on attempt {attempt + 1}/{self.retry_attempts}: {e}"
                )

            except ValueError as e:
                # Response body was not JSON
                raise MutationRequestFailed(request.problem_id, f"malformed response: {e}") from e

            if attempt < self.retry_attempts - 1 and self.backoff_seconds > 0:
                time.sleep(self.backoff_seconds * 2 ** attempt)

        raise MutationRequestFailed(
            request.problem_id, f"failed after {self.retry_attempts} attempts: {last_error}"
        )


class MutationDispatcher:
    """
    Runs mutation requests on background workers.

    `on_success(result)` and `on_failure(request, error)` are invoked from the
    worker thread. Cancellation is best-effort: a request already running
    finishes, but its result is dropped.
    """

    def __init__(
        self,
        client: MutationClient,
        on_success: Callable[[MutationResult], None],
        on_failure: Callable[[MutationRequest, MutationRequestFailed], None],
        max_workers: int = 2,
    ):
        self.client = client
        self.on_success = on_success
        self.on_failure = on_failure
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mutation")
        self._guard = threading.Lock()
        self._pending: dict[int, Future] = {}
        self._cancelled: set[int] = set()

    def submit(self, request: MutationRequest) -> Future:
        future = self._executor.submit(self._run, request)
        with self._guard:
            self._pending[request.attempt_id] = future
        future.add_done_callback(lambda _f: self._forget(request.attempt_id))
        logger.debug(
            f"Mutation request queued: problem {request.problem_id}, "
            f"attempt {request.attempt_id}, {request.mutation_class.value}"
        )
        return future

    def _forget(self, attempt_id: int) -> None:
        with self._guard:
            self._pending.pop(attempt_id, None)

    def _run(self, request: MutationRequest) -> MutationResult | None:
        try:
            result = self.client.request_mutation(request)
        except MutationRequestFailed as e:
            logger.warning(str(e))
            if not self._is_cancelled(request.attempt_id):
                self.on_failure(request, e)
            return None
        except Exception as e:  # Intentionally broad - any collaborator failure degrades the attempt
            failure = MutationRequestFailed(request.problem_id, repr(e))
            logger.warning(str(failure))
            if not self._is_cancelled(request.attempt_id):
                self.on_failure(request, failure)
            return None
        if self._is_cancelled(request.attempt_id):
            logger.debug(f"Mutation result for attempt {request.attempt_id} dropped (cancelled)")
            return None
        self.on_success(result)
        return result

    def _is_cancelled(self, attempt_id: int) -> bool:
        with self._guard:
            return attempt_id in self._cancelled

    def cancel(self, attempt_id: int) -> bool:
        """Best-effort cancel; returns True if the request had not started."""
        with self._guard:
            self._cancelled.add(attempt_id)
            future = self._pending.get(attempt_id)
        return future.cancel() if future is not None else False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class OfflineMutationClient:
    """Used when no mutation service is configured; every request degrades."""

    def request_mutation(self, request: MutationRequest) -> MutationResult:
        raise MutationRequestFailed(request.problem_id, "no mutation service configured")
