"""MQTT topic helpers.

We keep topic construction in one place so all components agree on naming.

Topic layout under a configurable namespace (default: `walkin/v1`):

Request/response:
- `<ns>/queue/requests`
- `<ns>/queue/responses/<client_id>`

Live views (retained, one message per recomputed view):
- `<ns>/views/customer/<customer_id>`
    Position, estimated wait and progress for one customer.
- `<ns>/views/staff`
    The full queue table in rank order.
- `<ns>/views/board`
    The public kiosk board.
- `<ns>/views/services`
    The service catalog, sorted by name.

Events:
- `<ns>/events/status`
    One message per successful transition (for the external notifier).

You can run multiple independent shops on a shared broker by changing the
`namespace` parameter (e.g. `--namespace shop/north`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "walkin/v1"


def queue_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/requests"


def queue_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/responses/{client_id}"


def customer_view(customer_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/views/customer/{customer_id}"


def staff_view(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/views/staff"


def board_view(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/views/board"


def services_view(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/views/services"


def status_events(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Status-change events.

    The notifier subscribes here and messages the customer when their entry
    goes in-service.
    """
    return f"{namespace}/events/status"
