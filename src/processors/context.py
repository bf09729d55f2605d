"""
Processor Context

Everything a processor needs, built once by the entry point and passed into
every processor instead of being reached through globals.
"""
from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from src.analytics.recorder import AnalyticsRecorder
from src.config import Settings, get_settings
from src.message_queue.mongo import MongoQueueManager
from src.realtime.automation import AutomationQueue
from src.realtime.dedup import DedupGate
from src.realtime.notifier import Notifier
from src.realtime.publisher import RealtimePublisher, build_publisher
from src.realtime.push import PushClient, build_push_client
from src.repositories import Repositories, TransactionRunner
from src.services.crm_client import CrmApiClient


@dataclass
class ProcessorContext:
    database: AsyncIOMotorDatabase
    repos: Repositories
    transactions: TransactionRunner
    queue: MongoQueueManager
    analytics: AnalyticsRecorder
    dedup: DedupGate
    notifier: Notifier
    crm: CrmApiClient
    settings: Settings

    @classmethod
    def build(
        cls,
        database: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        settings: Optional[Settings] = None,
        publisher: Optional[RealtimePublisher] = None,
        push: Optional[PushClient] = None,
        crm: Optional[CrmApiClient] = None,
        queue: Optional[MongoQueueManager] = None,
        analytics: Optional[AnalyticsRecorder] = None,
        dedup: Optional[DedupGate] = None,
    ) -> "ProcessorContext":
        """
        Wire the shared collaborators.

        Transactions are enabled only when a client is given and
        `mongodb_use_transactions` is set.
        """
        settings = settings or get_settings()
        repos = Repositories.build(database)
        dedup = dedup or DedupGate(database)

        return cls(
            database=database,
            repos=repos,
            transactions=TransactionRunner(client, enabled=settings.mongodb_use_transactions),
            queue=queue or MongoQueueManager(database),
            analytics=analytics or AnalyticsRecorder(database),
            dedup=dedup,
            notifier=Notifier(
                publisher or build_publisher(),
                push or build_push_client(repos.users),
                dedup,
                AutomationQueue(database),
            ),
            crm=crm or CrmApiClient(),
            settings=settings,
        )
