"""Submission gateway: pushes a completed pair's evaluation to the collection endpoint.

Per-pair state machine::

    Incomplete -> Complete(unsubmitted) -> Submitted
    Complete(unsubmitted) -> SubmitFailed -> Complete(unsubmitted)

Before the POST the pair is optimistically marked ``submitted`` and the store
persisted, so a second trigger while the first is in flight is a no-op.  Any
2xx response is success.  Any other status, or any error raised while sending,
rolls the flag back so a later call retries.  Failures are returned as
``SubmissionOutcome.FAILED`` with the reason in ``errors[pair_id]``; nothing
here raises into the rating session.

Delivery is best-effort, at most one attempt in flight per pair.
"""

from __future__ import annotations

import logging
import platform
import random
import string
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from chartpair import __version__
from chartpair.models import PairEvaluation, SubmissionOutcome
from chartpair.store import EvaluationStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

RATER_ID_FILENAME = "rater_id"

# Sent by check_endpoint; the sink stores it like any other row
CONNECTION_CHECK_PAIR_ID = "connection-check"


def _stamped_id(prefix: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def new_session_id() -> str:
    """``session_<epoch-ms>_<9 random base36 chars>``."""
    return _stamped_id("session")


def load_rater_id(state_dir: Path) -> str:
    """Return the rater id kept in the state folder, creating it on first use.

    The id (``user_<epoch-ms>_<9 base36 chars>``) outlives sessions, so every
    submission from one state dir carries the same ``userId``.
    """
    path = state_dir / ".chartpair" / RATER_ID_FILENAME
    if path.is_file():
        rater_id = path.read_text(encoding="utf-8").strip()
        if rater_id:
            return rater_id

    rater_id = _stamped_id("user")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(rater_id + "\n", encoding="utf-8")
    logger.info("New rater id %s", rater_id)
    return rater_id


def default_client_metadata() -> dict[str, str]:
    return {
        "userAgent": f"chartpair/{__version__}",
        "platform": platform.platform(),
        "python": platform.python_version(),
    }


def build_payload(
    evaluation: PairEvaluation,
    *,
    session_id: str,
    client: Mapping[str, str],
    rater_id: str | None = None,
) -> dict[str, Any]:
    """Serialise one pair's evaluation for the collection endpoint."""
    meta = evaluation.metadata
    evaluations = {
        category: result.model_dump(mode="json")
        for category, result in evaluation.evaluations.items()
    }
    return {
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "pairId": evaluation.pair_id,
        "dataset": meta.dataset or "unknown",
        "datasetKey": meta.dataset_key,
        "questionSet": meta.summary_set or "unknown",
        "summary": meta.summary,
        "question": meta.question,
        "pairNumber": meta.pair_number if meta.pair_number is not None else 1,
        "userId": rater_id,
        "sessionId": session_id,
        "client": dict(client),
        "startedAt": evaluation.started_at,
        "completedAt": evaluation.completed_at,
        "evaluations": evaluations,
    }


class SubmissionGateway:
    """Sends complete pairs to the remote sink and tracks the outcome.

    Args:
        store: Evaluation store holding the pair states.
        submit_url: Collection endpoint.  An empty URL makes every attempt
            fail (and stay retryable).
        client: Shared ``httpx.AsyncClient``.  Created on demand if omitted.
        timeout: Seconds allowed for one POST.
        session_id: Identifier sent with every payload from this session.
        rater_id: Persistent rater identifier (see ``load_rater_id``).
        client_metadata: Extra client details for the payload.
    """

    def __init__(
        self,
        store: EvaluationStore,
        submit_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        session_id: str | None = None,
        rater_id: str | None = None,
        client_metadata: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.submit_url = submit_url
        self.timeout = timeout
        self.session_id = session_id or new_session_id()
        self.rater_id = rater_id
        self.client_metadata = dict(client_metadata or default_client_metadata())
        # pair_id -> reason of the latest failed attempt
        self.errors: dict[str, str] = {}
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def submit_if_complete(self, pair_id: str) -> SubmissionOutcome:
        """Submit the pair if all categories are done and it is not already sent."""
        evaluation = self.store.get(pair_id)
        if evaluation is None or not evaluation.is_complete:
            return SubmissionOutcome.INCOMPLETE
        if evaluation.submitted:
            return SubmissionOutcome.ALREADY_SUBMITTED

        # Claim the pair before the network call so re-entrant triggers back off
        self.store.mark_submitted(pair_id)

        try:
            error = await self._post(
                build_payload(
                    evaluation,
                    session_id=self.session_id,
                    client=self.client_metadata,
                    rater_id=self.rater_id,
                )
            )
        except Exception as exc:
            logger.exception("%s: submission crashed", pair_id)
            error = f"unexpected error: {exc}"

        if error is None:
            self.errors.pop(pair_id, None)
            logger.info("%s: submitted", pair_id)
            return SubmissionOutcome.SENT

        self.errors[pair_id] = error
        logger.warning("%s: submission failed, will retry: %s", pair_id, error)
        self.store.clear_submitted(pair_id)
        return SubmissionOutcome.FAILED

    async def check_endpoint(self) -> str | None:
        """POST a throwaway evaluation to see whether the sink accepts data.

        Returns None when the endpoint answered 2xx, else a reason.  No pair
        state is touched.
        """
        payload = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "pairId": CONNECTION_CHECK_PAIR_ID,
            "dataset": "connection-check",
            "questionSet": "connection-check",
            "pairNumber": 1,
            "userId": self.rater_id,
            "sessionId": self.session_id,
            "client": self.client_metadata,
            "evaluations": {},
        }
        return await self._post(payload)

    async def _post(self, payload: dict[str, Any]) -> str | None:
        """POST *payload*.  Returns None on success, else a reason."""
        if not self.submit_url:
            return "no submission URL configured"

        try:
            response = await self._get_client().post(
                self.submit_url, json=payload, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            return f"network error: {exc}"
        except (httpx.InvalidURL, ValueError) as exc:
            return f"invalid submission URL {self.submit_url!r}: {exc}"

        if response.is_success:
            return None
        return f"HTTP {response.status_code}"

    async def retry_pending(self) -> dict[str, SubmissionOutcome]:
        """Re-attempt every pair that is complete but not yet delivered."""
        outcomes: dict[str, SubmissionOutcome] = {}
        for pair_id in self.store.pending_submission():
            outcomes[pair_id] = await self.submit_if_complete(pair_id)
        return outcomes
