"""Fraud-team notification sinks."""

import structlog

from .models import FraudAlert
from .stores import AlertSink

logger = structlog.get_logger()

DEFAULT_ALERT_TOPIC = "order-risk.fraud.alerts"


def alert_payload(alert: FraudAlert) -> dict:
    return {
        "alert_id": alert.id,
        "customer_id": alert.customer_id,
        "order_id": alert.order_id,
        "alert_type": alert.type.value,
        "severity": alert.severity.value,
        "score": alert.score,
        "description": alert.description,
        "factors": [f.model_dump(mode="json") for f in alert.factors],
        "status": alert.status.value,
        "created_at": alert.created_at.isoformat(),
    }


class KafkaAlertSink(AlertSink):
    """Publishes alerts to a Kafka topic for downstream consumption.

    Args:
        producer: A started aiokafka AIOKafkaProducer whose value_serializer
            JSON-encodes dicts (see ``shared.kafka_utils.create_producer``).
        topic: Destination topic.
    """

    def __init__(self, producer, topic: str = DEFAULT_ALERT_TOPIC) -> None:
        self._producer = producer
        self._topic = topic

    async def notify(self, alert: FraudAlert) -> None:
        # Errors propagate; AlertManager decides they are non-fatal
        await self._producer.send_and_wait(
            self._topic,
            value=alert_payload(alert),
            key=alert.customer_id.encode("utf-8"),
        )
        logger.info("alert_published_to_kafka", alert_id=alert.id, topic=self._topic)
