from conftest import profile as _profile
from walkin_queue.models import Action, Identity, Role
from walkin_queue.mqtt_topics import board_view, customer_view, services_view, staff_view, status_events
from walkin_queue.service import MqttQueueService, QueueEngine

NS = "test/ns"
REPLY = "test/ns/queue/responses/client-1"


class FakeMqtt:
    """Records publications instead of talking to a broker."""

    def __init__(self):
        self.published = []
        self.subscriptions = []
        self.handlers = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def publish(self, topic, message, *, retain=False):
        self.published.append((topic, message, retain))

    def on(self, topic):
        return [m for t, m, _ in self.published if t == topic]


class FakeSuggestions:
    def __init__(self):
        self.prompts = []

    def suggest_async(self, prompt, callback):
        self.prompts.append(prompt)
        callback("Try a textured crop")


def _service(engine):
    mqtt = FakeMqtt()
    svc = MqttQueueService(mqtt=mqtt, engine=engine, suggestions=FakeSuggestions(), namespace=NS)
    svc.start()
    engine.accounts.bootstrap_owner(Identity("boss", "Boss"))
    return svc, mqtt


def _request(svc, mqtt, **msg):
    msg.setdefault("reply_to", REPLY)
    msg.setdefault("corr_id", f"c{len(mqtt.published)}")
    svc._handle_message(f"{NS}/queue/requests", msg)
    return mqtt.on(REPLY)[-1]


def test_join_over_mqtt_publishes_customer_view(engine):
    svc, mqtt = _service(engine)
    _request(svc, mqtt, type="sign_in", customer_id="A", display_name="Asha", contact_handle="+91")

    resp = _request(svc, mqtt, type="join_queue", customer_id="A", service_id="haircut")
    assert resp["type"] == "joined"
    assert resp["position"] == 1
    assert resp["entry"]["customer_name"] == "Asha"

    view = mqtt.on(customer_view("A", NS))[-1]
    assert view["queued"] is True
    assert view["position"] == 1
    assert mqtt.on(staff_view(NS))[-1]["rows"][0]["customer_name"] == "Asha"
    assert mqtt.on(board_view(NS))[-1]["rows"][0]["first_name"] == "Asha"


def test_second_join_replies_already_queued(engine):
    svc, mqtt = _service(engine)
    _request(svc, mqtt, type="join_queue", customer_id="A", display_name="A", service_id="haircut")

    resp = _request(svc, mqtt, type="join_queue", customer_id="A", display_name="A", service_id="haircut")
    assert resp["type"] == "error"
    assert resp["code"] == "already_queued"
    assert resp["corr_id"]


def test_transition_requires_staff_account(engine):
    svc, mqtt = _service(engine)
    _request(svc, mqtt, type="sign_in", customer_id="A", display_name="A")
    joined = _request(svc, mqtt, type="join_queue", customer_id="A", service_id="haircut")
    entry_id = joined["entry"]["id"]

    resp = _request(svc, mqtt, type="transition", entry_id=entry_id, action="start", actor_id="A")
    assert resp["code"] == "unauthorized"

    resp = _request(svc, mqtt, type="transition", entry_id=entry_id, action="start", actor_id="boss")
    assert resp["type"] == "transition_ack"
    assert resp["status"] == "in-service"

    event = mqtt.on(status_events(NS))[-1]
    assert event["type"] == "status_changed"
    assert event["customer_id"] == "A"
    assert event["status"] == "in-service"


def test_stale_transition_reply_is_retryable(engine):
    svc, mqtt = _service(engine)
    joined = _request(svc, mqtt, type="join_queue", customer_id="A", display_name="A", service_id="haircut")
    entry_id = joined["entry"]["id"]
    _request(svc, mqtt, type="transition", entry_id=entry_id, action="start", actor_id="boss")

    resp = _request(
        svc, mqtt, type="transition", entry_id=entry_id, action="start", actor_id="boss", expected_status="waiting"
    )
    assert resp["code"] == "stale_entry"
    assert resp["retryable"] is True


def test_completed_customer_view_says_not_queued(engine):
    svc, mqtt = _service(engine)
    joined = _request(svc, mqtt, type="join_queue", customer_id="A", display_name="A", service_id="haircut")
    entry_id = joined["entry"]["id"]
    _request(svc, mqtt, type="transition", entry_id=entry_id, action="start", actor_id="boss")
    _request(svc, mqtt, type="transition", entry_id=entry_id, action="complete", actor_id="boss")

    assert mqtt.on(customer_view("A", NS))[-1]["queued"] is False
    assert not engine.fanout.has_customer_observer("A")


def test_malformed_and_unknown_requests(engine):
    svc, mqtt = _service(engine)
    assert _request(svc, mqtt, type="transition", actor_id="boss")["code"] == "bad_request"
    assert _request(svc, mqtt, type="fly")["code"] == "bad_request"
    assert _request(svc, mqtt, type="transition", entry_id="x", action="dance", actor_id="boss")["code"] == "bad_request"


def test_catalog_requests(engine):
    svc, mqtt = _service(engine)
    created = _request(
        svc, mqtt, type="create_service", actor_id="boss", name="Beard Trim", duration_minutes=10, price="80"
    )
    assert created["service"]["price"] == "80"

    listed = _request(svc, mqtt, type="list_services")
    assert [s["name"] for s in listed["services"]] == ["Beard Trim", "Haircut", "Shave"]

    sid = created["service"]["id"]
    assert _request(svc, mqtt, type="update_service", actor_id="boss", service_id=sid, name="Trim")["service"]["name"] == "Trim"
    assert _request(svc, mqtt, type="delete_service", actor_id="boss", service_id=sid)["type"] == "service_deleted"


def test_set_role_promotes_staff(engine):
    svc, mqtt = _service(engine)
    _request(svc, mqtt, type="sign_in", customer_id="sam", display_name="Sam")
    resp = _request(svc, mqtt, type="set_role", actor_id="boss", account_id="sam", role="staff")
    assert resp["account"]["role"] == "staff"
    assert engine.accounts.role_of("sam") == Role.STAFF


def test_suggest_uses_customers_service(engine):
    svc, mqtt = _service(engine)
    _request(svc, mqtt, type="join_queue", customer_id="A", display_name="A", service_id="shave")

    resp = _request(svc, mqtt, type="suggest", customer_id="A")
    assert resp == {"type": "suggestion", "text": "Try a textured crop", "corr_id": resp["corr_id"]}
    assert '"Shave"' in svc.suggestions.prompts[-1]

    assert _request(svc, mqtt, type="suggest", customer_id="nobody")["code"] == "not_found"


def test_expiry_removes_only_old_waiting_entries(store):
    engine = QueueEngine(store, max_wait_minutes=1)
    engine.catalog.create_service(Role.STAFF, service_id="cut", name="Cut", duration_minutes=10)
    old = engine.join("old", _profile("Old"), "cut")
    busy = engine.join("busy", _profile("Busy"), "cut")
    engine.transition(busy.id, Action.START, Role.STAFF)
    fresh = engine.join("fresh", _profile("Fresh"), "cut")

    acks = engine.expire_stale_entries(now=old.joined_at + 61.5)
    assert [a.entry_id for a in acks] == [old.id]
    assert engine.store.get_entry(old.id).status.value == "removed"
    assert engine.store.get_entry(busy.id).status.value == "in-service"
    assert engine.store.get_entry(fresh.id).status.value == "waiting"
    engine.close()


def test_expiry_disabled_by_default(engine):
    engine.join("a", _profile("A"), "haircut")
    assert engine.expire_stale_entries(now=10**12) == []



def test_service_catalog_is_published_retained(engine):
    svc, mqtt = _service(engine)
    assert [s["name"] for s in mqtt.on(services_view(NS))[-1]["services"]] == ["Haircut", "Shave"]

    _request(svc, mqtt, type="create_service", actor_id="boss", name="Beard Trim", duration_minutes=10)
    latest = [(m, r) for t, m, r in mqtt.published if t == services_view(NS)][-1]
    assert [s["name"] for s in latest[0]["services"]] == ["Beard Trim", "Haircut", "Shave"]
    assert latest[1] is True

    svc.stop()
    engine.catalog.delete_service(Role.OWNER, "shave")
    assert len(mqtt.on(services_view(NS))[-1]["services"]) == 3
