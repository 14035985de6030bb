import json
import logging

from kafka import KafkaProducer
from kafka.errors import KafkaError
from smartshop.core.config import settings

log = logging.getLogger(__name__)

_producer = None

def get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def emit_order_event(event: dict):
    """Publish to order.events after the owning transaction has committed.

    A broker outage is logged; the committed order stands.
    """
    try:
        send(settings.TOPIC_ORDER_EVENTS, key=str(event.get("order_number", "")), value=event)
    except KafkaError:
        log.exception("failed to publish %s for order %s", event.get("type"), event.get("order_number"))
