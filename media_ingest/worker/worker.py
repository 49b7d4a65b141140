import threading
from concurrent.futures import ThreadPoolExecutor

from media_ingest.config.settings import Settings
from media_ingest.logging.logger import Log
from media_ingest.queue.base import BaseConsumer, Delivery
from media_ingest.worker.job_runner import JobRunner


class Worker:
    """Consume loop: receive -> dispatch to the job pool."""

    def __init__(
        self,
        consumer: BaseConsumer,
        job_runner: JobRunner,
        settings: Settings,
    ) -> None:
        self._consumer = consumer
        self._job_runner = job_runner
        self._settings = settings

    def run(self, max_jobs: int | None = None) -> None:
        """Main consume loop. Runs forever until interrupted.

        If max_jobs is set, stop after dispatching that many jobs (for testing).
        In-flight jobs finish and are settled before run() returns.
        """
        Log.info("Worker started, consuming processing messages")
        pool = ThreadPoolExecutor(
            max_workers=self._settings.transcode_job_concurrency,
            thread_name_prefix="job",
        )
        dispatched = 0
        lock = threading.Lock()

        def on_delivery(delivery: Delivery) -> None:
            nonlocal dispatched
            pool.submit(self._job_runner.run, delivery)
            with lock:
                dispatched += 1
                done = max_jobs is not None and dispatched >= max_jobs
            if done:
                self._consumer.stop()

        try:
            self._consumer.consume(on_delivery)
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")
        finally:
            pool.shutdown(wait=True)
            self._consumer.settle_pending()
        Log.info(f"Worker stopped after dispatching {dispatched} job(s)")
