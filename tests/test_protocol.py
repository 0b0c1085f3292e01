from walkin_queue.mqtt_topics import (
    board_view,
    customer_view,
    queue_requests,
    queue_responses,
    staff_view,
    status_events,
)


def test_topic_helpers():
    ns = "demo/v1"
    assert queue_requests(ns) == "demo/v1/queue/requests"
    assert queue_responses("c1", ns) == "demo/v1/queue/responses/c1"
    assert customer_view("cust-7", ns) == "demo/v1/views/customer/cust-7"
    assert staff_view(ns) == "demo/v1/views/staff"
    assert board_view(ns) == "demo/v1/views/board"
    assert status_events(ns) == "demo/v1/events/status"


def test_default_namespace():
    assert queue_requests() == "walkin/v1/queue/requests"
