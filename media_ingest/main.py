from contextlib import ExitStack
from pathlib import Path

from media_ingest.config.settings import Settings
from media_ingest.database.connection import Database
from media_ingest.database.repositories.factory import AssetRepositoryFactory
from media_ingest.ingest.handoff import HandoffPublisher, HandoffReconciler
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.logging.logger import Log
from media_ingest.queue.factory import QueueFactory
from media_ingest.sessions.factory import SessionStoreFactory
from media_ingest.storage.factory import ObjectStoreFactory
from media_ingest.transcode.orchestrator import build_orchestrator
from media_ingest.transcode.profiles import load_profiles
from media_ingest.worker.job_runner import JobRunner
from media_ingest.worker.worker import Worker


def main() -> None:
    """Entry point: connect resources -> reconcile handoffs -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    Log.info(f"Starting media-ingest worker ({settings.app_env})")

    profiles_path = Path(settings.transcode_profiles_path) if settings.transcode_profiles_path else None
    profiles = load_profiles(profiles_path)

    with ExitStack() as stack:
        database = None
        if settings.asset_store_backend.lower() == "postgres":
            database = Database(settings)
            database.connect()
            stack.callback(database.close)
        asset_repo = AssetRepositoryFactory.create(settings, database)
        asset_repo.ensure_schema()

        session_store = SessionStoreFactory.create(settings)
        session_store.connect()
        stack.callback(session_store.close)

        object_store = ObjectStoreFactory.create(settings)
        object_store.connect()
        stack.callback(object_store.close)

        queues = QueueFactory(settings)
        publisher = queues.create_publisher()
        publisher.connect()
        stack.callback(publisher.close)
        consumer = queues.create_consumer()
        consumer.connect()
        stack.callback(consumer.close)

        handoff = HandoffPublisher(
            publisher, session_store, ChunkStaging(Path(settings.staging_root)), object_store.bucket
        )
        HandoffReconciler(session_store, handoff).run_once()

        orchestrator = build_orchestrator(
            settings, object_store, asset_repo, session_store, profiles=profiles
        )
        stack.callback(orchestrator.close)

        worker = Worker(consumer, JobRunner(orchestrator), settings)
        worker.run()


if __name__ == "__main__":
    main()
