"""Summary: Wires storage, events, delivery, and dispatch services together.

Importance: The trigger listener must be started exactly once per service graph.
Alternatives: Register listeners at import time.
"""

from __future__ import annotations

from dataclasses import dataclass

from mailcast.composer import ContentComposer
from mailcast.config import AppConfig
from mailcast.delivery import DeliveryChannel, DeliveryChannelFactory
from mailcast.directory import RecipientDirectory
from mailcast.events import EventBus
from mailcast.jobs import JobRunner, ThreadPoolJobRunner
from mailcast.records import DispatchRecords
from mailcast.services import (
    BatchDispatcher,
    ContentService,
    DispatchRecordManager,
    RecipientSnapshotStore,
    UnsubscribeService,
)
from mailcast.storage.sqlite_store import SqliteStore
from mailcast.triggers import TriggerListener


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for Mailcast.

    Importance: Lets the API and CLI share one graph and close it cleanly.
    Alternatives: Keep module-level singletons.
    """

    config: AppConfig
    store: SqliteStore
    events: EventBus
    jobs: JobRunner
    channel: DeliveryChannel
    directory: RecipientDirectory
    records: DispatchRecords
    snapshots: RecipientSnapshotStore
    manager: DispatchRecordManager
    dispatcher: BatchDispatcher
    content: ContentService
    unsubscribe: UnsubscribeService
    listener: TriggerListener

    def close(self) -> None:
        """Stop listening and wait for queued dispatch jobs."""

        self.listener.stop()
        self.jobs.shutdown(wait=True)


def build_services(
    config: AppConfig,
    jobs: JobRunner | None = None,
    channel: DeliveryChannel | None = None,
) -> AppServices:
    """Summary: Build and start the Mailcast service graph.

    Importance: `jobs` and `channel` default to the configured thread pool and provider.
    Alternatives: Require callers to pass every collaborator.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    events = EventBus()
    if jobs is None:
        jobs = ThreadPoolJobRunner(config.job_workers)
    if channel is None:
        channel = DeliveryChannelFactory(config).build()
    directory = RecipientDirectory(store=store)
    composer = ContentComposer(
        site_url=config.site_url,
        from_address=config.from_address,
        support_address=config.support_address,
    )
    records = DispatchRecords(store=store, events=events)
    snapshots = RecipientSnapshotStore(store=store, chunk_size=config.chunk_size)
    manager = DispatchRecordManager(
        store=store, directory=directory, composer=composer, records=records
    )
    dispatcher = BatchDispatcher(
        store=store,
        directory=directory,
        composer=composer,
        channel=channel,
        records=records,
        snapshots=snapshots,
        error_max_length=config.error_max_length,
        recipient_limit=config.recipient_limit,
    )
    listener = TriggerListener(events=events, dispatcher=dispatcher, jobs=jobs)
    listener.start()
    return AppServices(
        config=config,
        store=store,
        events=events,
        jobs=jobs,
        channel=channel,
        directory=directory,
        records=records,
        snapshots=snapshots,
        manager=manager,
        dispatcher=dispatcher,
        content=ContentService(store=store, manager=manager),
        unsubscribe=UnsubscribeService(directory=directory),
        listener=listener,
    )
