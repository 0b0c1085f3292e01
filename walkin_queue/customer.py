from __future__ import annotations

# Customer client.
#
# - connect to broker
# - sign in (first sign-in creates the account)
# - publish a join_queue request and print the result
# - optionally keep watching the live status view until it's your turn

import argparse
import threading
import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, customer_view, queue_requests, queue_responses


class QueueClient:
    """Request/response helper shared by the customer and staff CLIs."""

    def __init__(self, *, mqtt_host: str, mqtt_port: int, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.client_id = f"{name}-{int(time.time() * 1000)}"
        self.mqtt = MqttClient(client_id=self.client_id, host=mqtt_host, port=mqtt_port)
        self.reply_topic = queue_responses(self.client_id, namespace)

    def __enter__(self) -> QueueClient:
        self.mqtt.start()
        self.mqtt.subscribe(self.reply_topic)
        return self

    def __exit__(self, *exc: Any) -> None:
        self.mqtt.stop()

    def call(self, message: dict[str, Any], *, timeout: float = 5.0) -> dict[str, Any]:
        return self.mqtt.request(
            request_topic=queue_requests(self.namespace),
            response_topic=self.reply_topic,
            message=message,
            timeout=timeout,
        )


def format_status(view: dict[str, Any]) -> str:
    if not view.get("queued"):
        return "not in the queue"
    if view.get("status") == "in-service":
        entry = view.get("entry") or {}
        return f"it's your turn! now in service: {entry.get('service_name', '?')}"
    return (
        f"position {view.get('position')} | about {view.get('estimated_wait_minutes')} min | "
        f"{view.get('progress_percent')}%"
    )


def join_queue(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    customer_id: str,
    name: str,
    contact: str,
    service_id: str,
) -> dict[str, Any]:
    with QueueClient(mqtt_host=mqtt_host, mqtt_port=mqtt_port, namespace=namespace, name="customer") as c:
        signed = c.call(
            {"type": "sign_in", "customer_id": customer_id, "display_name": name, "contact_handle": contact}
        )
        if signed.get("type") == "error":
            return signed
        return c.call({"type": "join_queue", "customer_id": customer_id, "service_id": service_id})


def watch_status(*, mqtt_host: str, mqtt_port: int, namespace: str, customer_id: str) -> None:
    """Print every new status view until the customer is in service or gone."""
    done = threading.Event()
    topic = customer_view(customer_id, namespace)

    def on_view(t: str, msg: dict[str, Any]) -> None:
        if t != topic:
            return
        print(f"[customer {customer_id}] {format_status(msg)}")
        if not msg.get("queued") or msg.get("status") == "in-service":
            done.set()

    mqtt = MqttClient(client_id=f"watch-{customer_id}-{int(time.time())}", host=mqtt_host, port=mqtt_port)
    mqtt.start()
    mqtt.add_handler(on_view)
    mqtt.subscribe(topic)
    try:
        while not done.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Customer client (MQTT)")
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--contact", default="", help="phone number or other contact handle")
    parser.add_argument("--service-id", required=True)
    parser.add_argument("--watch", action="store_true", help="keep printing live position updates")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    args = parser.parse_args()

    resp = join_queue(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        customer_id=args.customer_id,
        name=args.name,
        contact=args.contact,
        service_id=args.service_id,
    )
    if resp.get("type") == "joined":
        entry = resp["entry"]
        print(
            f"[customer {args.name}] joined for {entry['service_name']} "
            f"(#{entry['sequence_number']}, position {resp['position']}, "
            f"about {resp['estimated_wait_minutes']} min)"
        )
    elif resp.get("code") == "already_queued":
        print(f"[customer {args.name}] already in the queue")
    else:
        print(f"[customer {args.name}] error: {resp.get('message', resp)}")
        return

    if args.watch:
        watch_status(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            customer_id=args.customer_id,
        )


if __name__ == "__main__":
    main()
