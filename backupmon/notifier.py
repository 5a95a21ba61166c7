from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import replace

from .models import NotificationState, ProgressSubscription

logger = logging.getLogger("backupmon.notifier")


class ProgressNotifier:
    """Decides whether a job's progress surface is shown.

    Visibility is tracked per job occurrence and is independent of the job
    itself: dismissing hides the surface while the job keeps running, and a
    new job for the same client starts visible again.

    Hidden subscriptions are kept so late events for a finished occurrence
    stay hidden; only the most recent ``max_hidden`` of them are retained.
    """

    def __init__(self, max_hidden: int = 256) -> None:
        self._subscriptions: OrderedDict[int, ProgressSubscription] = OrderedDict()
        self._current: dict[str, int] = {}
        self._max_hidden = max_hidden

    def on_started(self, client_id: str, job_id: int) -> ProgressSubscription:
        """A job started; a new occurrence re-arms visibility."""
        sub = self._subscriptions.get(job_id)
        if sub is not None:
            # duplicate start for the same occurrence keeps its dismissal
            return replace(sub)

        sub = self._arm(client_id, job_id)
        logger.debug(f"Progress surface armed for job {job_id} ({client_id})")
        return replace(sub)

    def on_progress(
        self,
        client_id: str,
        job_id: int,
        progress: int,
        message: str | None = None,
    ) -> bool:
        """Record progress; returns whether the surface should be visible."""
        sub = self._subscriptions.get(job_id)
        if sub is None:
            sub = self._arm(client_id, job_id)

        sub.last_seen_progress = max(sub.last_seen_progress, progress)
        if message is not None:
            sub.message = message
        return sub.visible

    def dismiss(self, job_id: int) -> bool:
        """Hide the surface for this occurrence; the job is not affected."""
        sub = self._subscriptions.get(job_id)
        if sub is None or sub.state is NotificationState.hidden:
            return False
        sub.dismissed = True
        sub.state = NotificationState.dismissed
        logger.debug(f"Progress surface dismissed for job {job_id}")
        return True

    def on_terminal(self, job_id: int) -> None:
        sub = self._subscriptions.get(job_id)
        if sub is None or sub.state is NotificationState.hidden:
            return
        self._hide(sub)
        if self._current.get(sub.client_id) == job_id:
            del self._current[sub.client_id]
        self._prune()

    def is_visible(self, job_id: int) -> bool:
        sub = self._subscriptions.get(job_id)
        return bool(sub and sub.visible)

    def get(self, job_id: int) -> ProgressSubscription | None:
        sub = self._subscriptions.get(job_id)
        return replace(sub) if sub else None

    def current_job(self, client_id: str) -> int | None:
        """Job id of the client's most recent non-terminal occurrence."""
        return self._current.get(client_id)

    def visible(self) -> list[ProgressSubscription]:
        return [replace(s) for s in self._subscriptions.values() if s.visible]

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _arm(self, client_id: str, job_id: int) -> ProgressSubscription:
        previous = self._current.get(client_id)
        if previous is not None and previous != job_id:
            # superseded occurrence no longer owns the client's surface
            old = self._subscriptions.get(previous)
            if old is not None:
                self._hide(old)

        sub = ProgressSubscription(
            job_id=job_id,
            client_id=client_id,
            state=NotificationState.visible,
        )
        self._subscriptions[job_id] = sub
        self._current[client_id] = job_id
        self._prune()
        return sub

    def _hide(self, sub: ProgressSubscription) -> None:
        sub.state = NotificationState.hidden
        # hidden entries age from the moment they were hidden
        self._subscriptions.move_to_end(sub.job_id)

    def _prune(self) -> None:
        hidden = [
            job_id
            for job_id, sub in self._subscriptions.items()
            if sub.state is NotificationState.hidden
        ]
        for job_id in hidden[: max(0, len(hidden) - self._max_hidden)]:
            del self._subscriptions[job_id]
