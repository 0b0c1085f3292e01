from __future__ import annotations

# The queue service is the *authoritative brain* of the system.
#
# IMPORTANT: This file contains two layers:
# 1) `QueueEngine` (pure logic over the store, easy to unit test)
# 2) `MqttQueueService` + `main()` (integration with the MQTT broker)

import argparse
import logging
import threading
import time
from typing import Any, Callable, TYPE_CHECKING

from .accounts import AccountRegistry
from .admission import AdmissionController
from .catalog import ServiceCatalog
from .errors import NotFound, QueueError, StaleEntry, ValidationError
from .estimator import PositionEstimate, estimate
from .fanout import BoardView, CustomerStatusView, LiveViewFanout, StaffQueueView
from .models import (
    Ack,
    Action,
    CustomerProfile,
    EntryStatus,
    Identity,
    QueueEntry,
    Role,
    Service,
)
from .state_machine import QueueStateMachine
from .store import QueueStore, Subscription
from .suggestions import SuggestionClient, style_ideas_prompt

if TYPE_CHECKING:
    from .config import Settings
    from .mqtt_client import MqttClient

log = logging.getLogger(__name__)

StatusListener = Callable[[QueueEntry, Ack], None]


class QueueEngine:
    """Core coordination logic (testable without MQTT)."""

    def __init__(
        self,
        store: QueueStore | None = None,
        *,
        max_wait_minutes: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or QueueStore()
        self.accounts = AccountRegistry(self.store)
        self.catalog = ServiceCatalog(self.store)
        self.admission = AdmissionController(self.store)
        self.state_machine = QueueStateMachine(self.store)
        self.fanout = LiveViewFanout()
        self._subscription = self.fanout.attach(self.store)

        self.max_wait_minutes = max_wait_minutes
        self._clock = clock
        self._listeners: list[StatusListener] = []

    def close(self) -> None:
        self._subscription.cancel()

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # -------------------- queue operations --------------------

    def join(self, customer_id: str, profile: CustomerProfile, service_id: str) -> QueueEntry:
        return self.admission.join(customer_id, profile, service_id)

    def transition(
        self,
        entry_id: str,
        action: Action,
        actor_role: Role,
        *,
        expected_status: EntryStatus | None = None,
    ) -> Ack:
        ack = self.state_machine.transition(entry_id, action, actor_role, expected_status=expected_status)
        entry = self.store.get_entry(entry_id)
        if entry is not None:
            for listener in list(self._listeners):
                try:
                    listener(entry, ack)
                except Exception:
                    log.exception("status listener failed for entry %s", entry_id)
        return ack

    def position(self, customer_id: str) -> PositionEstimate:
        """Fresh estimate for one customer from the current active set."""
        return estimate(self.store.snapshot().entries, customer_id)

    def expire_stale_entries(self, now: float | None = None) -> list[Ack]:
        """Remove waiting entries that have waited longer than max_wait_minutes.

        In-service entries never expire. Entries that change while we sweep
        are left alone.
        """
        if self.max_wait_minutes is None:
            return []
        now = self._clock() if now is None else now
        cutoff = now - self.max_wait_minutes * 60
        acks: list[Ack] = []
        for entry in self.store.snapshot().entries:
            if entry.status != EntryStatus.WAITING or entry.joined_at > cutoff:
                continue
            try:
                acks.append(
                    self.transition(entry.id, Action.REMOVE, Role.STAFF, expected_status=EntryStatus.WAITING)
                )
            except StaleEntry:
                continue
            log.info("expired entry %s for customer %s", entry.id, entry.customer_id)
        return acks


class MqttQueueService:
    """MQTT adapter around the QueueEngine business logic."""

    def __init__(
        self,
        *,
        mqtt: MqttClient,
        engine: QueueEngine | None = None,
        suggestions: SuggestionClient | None = None,
        namespace: str = "walkin/v1",
    ) -> None:
        # Local imports so unit tests can import QueueEngine without paho-mqtt.
        from . import mqtt_topics

        self._topics = mqtt_topics
        self.mqtt = mqtt
        self.namespace = namespace
        self.engine = engine or QueueEngine()
        self.suggestions = suggestions or SuggestionClient()

        self._customer_observers: dict[str, int] = {}
        self._observers_lock = threading.Lock()

        # Background expiry sweeper control.
        self._stop_event = threading.Event()
        self._sweep_thread: threading.Thread | None = None
        self._services_sub: Subscription | None = None

        self._routes: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "sign_in": self._on_sign_in,
            "set_role": self._on_set_role,
            "list_services": self._on_list_services,
            "create_service": self._on_create_service,
            "update_service": self._on_update_service,
            "delete_service": self._on_delete_service,
            "join_queue": self._on_join,
            "position": self._on_position,
            "transition": self._on_transition,
        }

    def start(self, *, sweep_every: float = 30.0) -> None:
        self.mqtt.subscribe(self._topics.queue_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

        # Staff table and kiosk board are always published.
        self.engine.fanout.add_staff_observer(self._publish_staff)
        self.engine.fanout.add_board_observer(self._publish_board)
        self.engine.add_status_listener(self._publish_status_event)
        self._services_sub = self.engine.store.subscribe_services(self._publish_services)

        # Customers already in the queue (e.g. after a restart) keep their view.
        for entry in self.engine.store.active_entries():
            self._watch_customer(entry.customer_id)

        if self.engine.max_wait_minutes is not None:
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop,
                args=(sweep_every,),
                name="expiry-sweeper",
                daemon=True,
            )
            self._sweep_thread.start()

    def stop(self) -> None:
        """Stop background threads. Call before disconnecting MQTT."""
        self._stop_event.set()
        t = self._sweep_thread
        if t and t.is_alive():
            t.join(timeout=1.0)
        if self._services_sub is not None:
            self._services_sub.cancel()
        self.engine.close()

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.engine.expire_stale_entries()
            except QueueError as e:
                log.warning("expiry sweep failed: %s", e.message)

    # -------------------- view publishing --------------------

    def _publish_staff(self, view: StaffQueueView) -> None:
        self.mqtt.publish(self._topics.staff_view(self.namespace), view.to_message(), retain=True)

    def _publish_board(self, view: BoardView) -> None:
        self.mqtt.publish(self._topics.board_view(self.namespace), view.to_message(), retain=True)

    def _publish_services(self, services: tuple[Service, ...]) -> None:
        message = {"type": "services", "services": [s.to_message() for s in services]}
        self.mqtt.publish(self._topics.services_view(self.namespace), message, retain=True)

    def _publish_status_event(self, entry: QueueEntry, ack: Ack) -> None:
        event = ack.to_message()
        event.update(
            type="status_changed",
            customer_id=entry.customer_id,
            customer_name=entry.customer_name,
            contact_handle=entry.contact_handle,
            service_name=entry.service_name,
        )
        self.mqtt.publish(self._topics.status_events(self.namespace), event)

    def _watch_customer(self, customer_id: str) -> None:
        """Publish this customer's view until they leave the active set."""
        with self._observers_lock:
            if customer_id in self._customer_observers:
                return
            self._customer_observers[customer_id] = -1

        topic = self._topics.customer_view(customer_id, self.namespace)

        def deliver(view: CustomerStatusView) -> None:
            self.mqtt.publish(topic, view.to_message(), retain=True)
            if not view.estimate.queued:
                self._unwatch_customer(customer_id)

        observer_id = self.engine.fanout.add_customer_observer(customer_id, deliver)
        with self._observers_lock:
            still_watching = self._customer_observers.get(customer_id) == -1
            if still_watching:
                self._customer_observers[customer_id] = observer_id
        if not still_watching:
            # The first view already said "not queued".
            self.engine.fanout.remove_observer(observer_id)

    def _unwatch_customer(self, customer_id: str) -> None:
        with self._observers_lock:
            observer_id = self._customer_observers.pop(customer_id, None)
        if observer_id is not None and observer_id >= 0:
            self.engine.fanout.remove_observer(observer_id)

    # -------------------- request handling --------------------

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        mtype = msg.get("type")

        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return

        if mtype == "suggest":
            self._on_suggest(msg, reply_to, corr_id)
            return

        route = self._routes.get(str(mtype))
        if route is None:
            self._reply(reply_to, corr_id, ValidationError(f"unknown request type {mtype!r}").to_response().to_message())
            return

        try:
            response = route(msg)
        except QueueError as e:
            self._reply(reply_to, corr_id, e.to_response().to_message())
            return
        except (KeyError, ValueError) as e:
            self._reply(reply_to, corr_id, ValidationError(f"malformed request: {e}").to_response().to_message())
            return
        self._reply(reply_to, corr_id, response)

    def _role_of(self, msg: dict[str, Any]) -> Role:
        actor_id = str(msg.get("actor_id", ""))
        if not actor_id:
            raise ValidationError("actor_id required")
        return self.engine.accounts.role_of(actor_id)

    def _on_sign_in(self, msg: dict[str, Any]) -> dict[str, Any]:
        identity = Identity(
            customer_id=str(msg.get("customer_id", "")),
            display_name=str(msg.get("display_name", "")),
            contact_handle=str(msg.get("contact_handle", "")),
        )
        account = self.engine.accounts.sign_in(identity)
        return {"type": "signed_in", "account": account.to_message()}

    def _on_set_role(self, msg: dict[str, Any]) -> dict[str, Any]:
        account = self.engine.accounts.set_role(self._role_of(msg), str(msg["account_id"]), Role(msg["role"]))
        return {"type": "role_set", "account": account.to_message()}

    def _on_list_services(self, msg: dict[str, Any]) -> dict[str, Any]:
        return {"type": "services", "services": [s.to_message() for s in self.engine.catalog.list_services()]}

    def _on_create_service(self, msg: dict[str, Any]) -> dict[str, Any]:
        service = self.engine.catalog.create_service(
            self._role_of(msg),
            name=msg.get("name", ""),
            duration_minutes=msg.get("duration_minutes"),
            price=msg.get("price", 0),
            description=msg.get("description"),
            service_id=msg.get("service_id") or None,
        )
        return {"type": "service_saved", "service": service.to_message()}

    def _on_update_service(self, msg: dict[str, Any]) -> dict[str, Any]:
        fields = ("name", "duration_minutes", "price", "description")
        changes = {k: msg[k] for k in fields if k in msg}
        service = self.engine.catalog.update_service(self._role_of(msg), str(msg["service_id"]), **changes)
        return {"type": "service_saved", "service": service.to_message()}

    def _on_delete_service(self, msg: dict[str, Any]) -> dict[str, Any]:
        service_id = str(msg["service_id"])
        self.engine.catalog.delete_service(self._role_of(msg), service_id)
        return {"type": "service_deleted", "service_id": service_id}

    def _on_join(self, msg: dict[str, Any]) -> dict[str, Any]:
        customer_id = str(msg.get("customer_id", ""))
        account = self.engine.store.get_account(customer_id) if customer_id else None
        if account is not None:
            profile = CustomerProfile(display_name=account.display_name, contact_handle=account.contact_handle)
        else:
            profile = CustomerProfile(
                display_name=str(msg.get("display_name", "")),
                contact_handle=str(msg.get("contact_handle", "")),
            )
        entry = self.engine.join(customer_id, profile, str(msg.get("service_id", "")))
        self._watch_customer(customer_id)
        est = self.engine.position(customer_id)
        return {
            "type": "joined",
            "entry": entry.to_message(),
            "position": est.position,
            "estimated_wait_minutes": est.estimated_wait_minutes,
        }

    def _on_position(self, msg: dict[str, Any]) -> dict[str, Any]:
        customer_id = str(msg.get("customer_id", ""))
        view = CustomerStatusView(customer_id=customer_id, estimate=self.engine.position(customer_id))
        return view.to_message()

    def _on_transition(self, msg: dict[str, Any]) -> dict[str, Any]:
        expected = msg.get("expected_status")
        ack = self.engine.transition(
            str(msg["entry_id"]),
            Action(msg["action"]),
            self._role_of(msg),
            expected_status=EntryStatus(expected) if expected else None,
        )
        return ack.to_message()

    def _on_suggest(self, msg: dict[str, Any], reply_to: str, corr_id: str | None) -> None:
        # Runs off the MQTT thread; never blocks queue requests.
        service_name = str(msg.get("service_name", ""))
        if not service_name:
            customer_id = str(msg.get("customer_id", ""))
            entry = self.engine.position(customer_id).entry
            if entry is None:
                self._reply(reply_to, corr_id, NotFound("no active entry").to_response().to_message())
                return
            service_name = entry.service_name
        prompt = str(msg.get("prompt") or style_ideas_prompt(service_name))
        self.suggestions.suggest_async(
            prompt,
            lambda text: self._reply(reply_to, corr_id, {"type": "suggestion", "text": text}),
        )


def build_service(settings: Settings, mqtt_client: MqttClient) -> MqttQueueService:
    store = QueueStore(retries=settings.store_retries, backoff=settings.store_backoff)
    engine = QueueEngine(store, max_wait_minutes=settings.max_wait_minutes)
    suggestions = SuggestionClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout=settings.suggest_timeout,
    )
    return MqttQueueService(mqtt=mqtt_client, engine=engine, suggestions=suggestions, namespace=settings.namespace)


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .config import Settings
    from .logging_config import setup_logging
    from .mqtt_client import MqttClient

    settings = Settings()
    parser = argparse.ArgumentParser(description="Walk-in queue service (MQTT)")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument("--owner-id", default=None, help="account id to register as shop owner")
    parser.add_argument("--owner-name", default="Owner")
    parser.add_argument(
        "--max-wait-minutes",
        type=float,
        default=settings.max_wait_minutes,
        help="remove waiting entries older than this (default: never)",
    )
    parser.add_argument("--sweep-every", type=float, default=settings.sweep_every)
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    settings.mqtt_host = args.mqtt_host
    settings.mqtt_port = args.mqtt_port
    settings.namespace = args.namespace
    settings.max_wait_minutes = args.max_wait_minutes
    settings.log_level = args.log_level
    setup_logging(settings.log_level, settings.log_file)

    mqtt_client = MqttClient(client_id=f"walkin-service-{int(time.time())}", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = build_service(settings, mqtt_client)
    if args.owner_id:
        service.engine.accounts.bootstrap_owner(Identity(customer_id=args.owner_id, display_name=args.owner_name))
    service.start(sweep_every=args.sweep_every)

    print(f"[service] connected to MQTT {args.mqtt_host}:{args.mqtt_port}, namespace={args.namespace}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
