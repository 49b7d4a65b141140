from media_ingest.logging.logger import Log
from media_ingest.queue.base import Delivery
from media_ingest.transcode.orchestrator import TranscodeOrchestrator


class JobRunner:
    """Run one delivery, catch exceptions, and settle the message."""

    def __init__(self, orchestrator: TranscodeOrchestrator) -> None:
        self._orchestrator = orchestrator

    def run(self, delivery: Delivery) -> None:
        """Process a single message; ack on success, nack on failure."""
        message = delivery.message
        Log.info(
            "Running transcode job",
            upload_id=message.upload_id,
            content_hash=message.content_hash,
            redelivered=delivery.redelivered,
        )
        try:
            result = self._orchestrator.process(message)
        except Exception as exc:
            self._handle_failure(delivery, exc)
            return
        delivery.ack()
        Log.info(
            f"Job completed: asset {result.asset.id} {result.asset.status.value}",
            upload_id=message.upload_id,
        )

    def _handle_failure(self, delivery: Delivery, exc: Exception) -> None:
        """Requeue on first failure; dead-letter a message that already came back."""
        message = delivery.message
        Log.error(f"Job failed: {exc}", upload_id=message.upload_id)
        if delivery.redelivered:
            delivery.nack(requeue=False)
            Log.error("Dead-lettered after redelivery", upload_id=message.upload_id)
        else:
            delivery.nack(requeue=True)
            Log.warning("Requeued for one more attempt", upload_id=message.upload_id)
