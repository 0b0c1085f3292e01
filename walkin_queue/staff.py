from __future__ import annotations

# Staff client.
#
# Staff act on entries (start / complete / remove), look at the queue table,
# and maintain the service catalog. Every request carries the staff member's
# account id; the service looks up the role.
#
# The queue table and the kiosk board are retained MQTT messages, so reading
# them is just "subscribe and wait for the first message".

import argparse
import threading
import time
from typing import Any

from .customer import QueueClient
from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, board_view, staff_view


def format_staff_table(view: dict[str, Any]) -> str:
    rows = view.get("rows") or []
    if not rows:
        return "The queue is empty."
    lines = [f"{'#':>3}  {'no.':>4}  {'customer':<20} {'service':<16} {'status':<11} entry"]
    for r in rows:
        lines.append(
            f"{r['rank']:>3}  {r['sequence_number']:>4}  {r['customer_name'][:20]:<20} "
            f"{r['service_name'][:16]:<16} {r['status']:<11} {r['entry_id']}"
        )
    return "\n".join(lines)


def format_board(view: dict[str, Any]) -> str:
    rows = view.get("rows") or []
    if not rows:
        return "The queue is empty."
    return "\n".join(
        f"{r['rank']:>3}. {r['first_name']:<12} {r['service_name']:<16} {r['status']}" for r in rows
    )


def read_view(*, mqtt_host: str, mqtt_port: int, topic: str, timeout: float = 5.0) -> dict[str, Any] | None:
    """Return the retained view on `topic`, or None if nothing arrives in time."""
    got: list[dict[str, Any]] = []
    ready = threading.Event()

    def on_view(t: str, msg: dict[str, Any]) -> None:
        if t == topic and not ready.is_set():
            got.append(msg)
            ready.set()

    mqtt = MqttClient(client_id=f"view-{int(time.time() * 1000)}", host=mqtt_host, port=mqtt_port)
    mqtt.start()
    mqtt.add_handler(on_view)
    mqtt.subscribe(topic)
    try:
        ready.wait(timeout)
    finally:
        mqtt.stop()
    return got[0] if got else None


def watch_board(*, mqtt_host: str, mqtt_port: int, namespace: str) -> None:
    topic = board_view(namespace)

    def on_view(t: str, msg: dict[str, Any]) -> None:
        if t == topic:
            print("\n" + format_board(msg))

    mqtt = MqttClient(client_id=f"board-{int(time.time())}", host=mqtt_host, port=mqtt_port)
    mqtt.start()
    mqtt.add_handler(on_view)
    mqtt.subscribe(topic)
    print(f"[board] watching {topic} (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()


def _print_result(resp: dict[str, Any]) -> None:
    if resp.get("type") == "error":
        hint = " (refresh and retry)" if resp.get("retryable") else ""
        print(f"[staff] error {resp.get('code')}: {resp.get('message')}{hint}")
        return
    if resp.get("type") == "transition_ack":
        print(f"[staff] entry {resp['entry_id']}: {resp['previous_status']} -> {resp['status']}")
        return
    if resp.get("type") == "services":
        for s in resp["services"]:
            print(f"{s['id']}  {s['name']:<20} {s['duration_minutes']:>4} min  {s['price']}")
        return
    print(f"[staff] {resp}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Staff client (MQTT)")
    parser.add_argument("--staff-id", required=True, help="your account id")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("queue", help="print the queue table")

    for action in ("start", "complete", "remove"):
        p = sub.add_parser(action, help=f"{action} an entry")
        p.add_argument("entry_id")
        p.add_argument("--expected-status", default=None, help="status you saw (guards against races)")

    sub.add_parser("services", help="list services")

    p_add = sub.add_parser("add-service", help="create a service")
    p_add.add_argument("--name", required=True)
    p_add.add_argument("--duration-minutes", type=int, required=True)
    p_add.add_argument("--price", default="0")
    p_add.add_argument("--description", default=None)
    p_add.add_argument("--service-id", default=None)

    p_edit = sub.add_parser("edit-service", help="edit a service")
    p_edit.add_argument("service_id")
    p_edit.add_argument("--name", default=None)
    p_edit.add_argument("--duration-minutes", type=int, default=None)
    p_edit.add_argument("--price", default=None)
    p_edit.add_argument("--description", default=None)

    p_del = sub.add_parser("delete-service", help="delete a service")
    p_del.add_argument("service_id")

    p_role = sub.add_parser("set-role", help="(owner) change an account's role")
    p_role.add_argument("account_id")
    p_role.add_argument("role", choices=["customer", "staff", "owner"])

    args = parser.parse_args()

    if args.cmd == "queue":
        view = read_view(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, topic=staff_view(args.namespace))
        print(format_staff_table(view) if view is not None else "[staff] no queue view published yet")
        return

    base = {"actor_id": args.staff_id}
    if args.cmd in ("start", "complete", "remove"):
        msg = {**base, "type": "transition", "entry_id": args.entry_id, "action": args.cmd}
        if args.expected_status:
            msg["expected_status"] = args.expected_status
    elif args.cmd == "services":
        msg = {**base, "type": "list_services"}
    elif args.cmd == "add-service":
        msg = {
            **base,
            "type": "create_service",
            "name": args.name,
            "duration_minutes": args.duration_minutes,
            "price": args.price,
            "description": args.description,
            "service_id": args.service_id,
        }
    elif args.cmd == "edit-service":
        msg = {**base, "type": "update_service", "service_id": args.service_id}
        for key in ("name", "duration_minutes", "price", "description"):
            value = getattr(args, key)
            if value is not None:
                msg[key] = value
    elif args.cmd == "set-role":
        msg = {**base, "type": "set_role", "account_id": args.account_id, "role": args.role}
    else:
        msg = {**base, "type": "delete_service", "service_id": args.service_id}

    with QueueClient(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace, name="staff") as c:
        _print_result(c.call(msg))


if __name__ == "__main__":
    main()
