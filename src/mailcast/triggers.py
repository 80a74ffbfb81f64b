"""Summary: Schedules dispatch work in response to record events.

Importance: Sends start exactly when a record is created pending or retried from failed.
Alternatives: Poll the database for pending records.
"""

from __future__ import annotations

import logging

from mailcast.events import DISPATCH_ADDED, DISPATCH_EDITED, DispatchEvent, EventBus
from mailcast.jobs import JobRunner
from mailcast.models import DispatchStatus
from mailcast.services import BatchDispatcher


logger = logging.getLogger(__name__)


class TriggerListener:
    """Summary: Listens for dispatch record events and enqueues sends.

    Importance: Event handlers only enqueue, so triggering paths never block on delivery.
    Alternatives: Register module-level handlers at import time.
    """

    def __init__(self, events: EventBus, dispatcher: BatchDispatcher, jobs: JobRunner) -> None:
        self._events = events
        self._dispatcher = dispatcher
        self._jobs = jobs
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._events.on(DISPATCH_ADDED, self.handle_added)
        self._events.on(DISPATCH_EDITED, self.handle_edited)
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._events.off(DISPATCH_ADDED, self.handle_added)
        self._events.off(DISPATCH_EDITED, self.handle_edited)
        self._started = False

    def handle_added(self, event: DispatchEvent) -> bool:
        """Summary: Enqueue a send for a newly created pending record.

        Importance: Imports of historical content must not email anyone.
        Alternatives: Filter imports before records are created.
        """

        if event.context.importing:
            logger.info("Dispatch %s changed during import; not sending.", event.record.id)
            return False
        if event.record.status != DispatchStatus.PENDING.value:
            return False
        self._jobs.enqueue(self._dispatcher.run_job, {"record": event.record})
        logger.info("Enqueued dispatch %s.", event.record.id)
        return True

    def handle_edited(self, event: DispatchEvent) -> bool:
        """Summary: Enqueue a send only when an edit moved a record from failed to pending.

        Importance: The dispatcher's own status writes must not re-trigger it.
        Alternatives: Expose a dedicated retry event.
        """

        retried = (
            event.status_changed
            and event.record.status == DispatchStatus.PENDING.value
            and event.previous_status == DispatchStatus.FAILED.value
        )
        if not retried:
            return False
        return self.handle_added(event)
