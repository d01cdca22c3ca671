# phi_guard/infrastructure/messaging/rabbitmq_publisher.py

import json

import aio_pika

from phi_guard.governance.alerting import Alert


class RabbitMQAlertSink:
    """
    AlertSink publishing to a durable topic exchange. Routing key: alert.<kind>.
    Payloads carry references only; the alert id doubles as the idempotency key.
    """

    def __init__(self, rabbitmq_url: str, exchange_name: str = "phi_alerts"):
        self._url = rabbitmq_url
        self._exchange_name = exchange_name
        self._connection = None
        self._channel = None
        self._exchange = None

    async def connect(self):
        self._connection = await aio_pika.connect_robust(self._url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            aio_pika.ExchangeType.TOPIC,
            durable=True,
        )

    async def send(self, alert: Alert) -> None:
        if not self._exchange:
            await self.connect()

        msg = aio_pika.Message(
            body=json.dumps(alert.to_dict()).encode(),
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers={
                "idempotency_key": alert.alert_id,
            },
        )

        await self._exchange.publish(msg, routing_key=f"alert.{alert.kind.value.lower()}")

    async def close(self):
        if self._connection:
            await self._connection.close()
