from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m walkin_queue.app serve --owner-id OWNER
#     python -m walkin_queue.app customer --customer-id C1 --name Asha --service-id haircut --watch
#     python -m walkin_queue.app staff --staff-id OWNER start <entry_id>
#     python -m walkin_queue.app board
#
# Each subcommand forwards its arguments to the matching module's `main()`.

import argparse
import sys


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk-in Queue System (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default="127.0.0.1")
        p.add_argument("--mqtt-port", type=int, default=1883)
        p.add_argument("--namespace", default="walkin/v1")

    p_serve = sub.add_parser("serve", help="Start the queue service")
    add_mqtt_args(p_serve)
    p_serve.add_argument("--owner-id", default=None)
    p_serve.add_argument("--owner-name", default="Owner")
    p_serve.add_argument("--max-wait-minutes", type=float, default=None)
    p_serve.add_argument("--sweep-every", type=float, default=None)
    p_serve.add_argument("--log-level", default=None)

    p_cust = sub.add_parser("customer", help="Join the queue (and optionally watch your position)")
    add_mqtt_args(p_cust)
    p_cust.add_argument("--customer-id", required=True)
    p_cust.add_argument("--name", required=True)
    p_cust.add_argument("--contact", default="")
    p_cust.add_argument("--service-id", required=True)
    p_cust.add_argument("--watch", action="store_true")

    p_staff = sub.add_parser("staff", help="Staff actions: queue table, start/complete/remove, services")
    add_mqtt_args(p_staff)
    p_staff.add_argument("--staff-id", required=True)
    p_staff.add_argument("staff_args", nargs=argparse.REMAINDER, help="staff subcommand and its arguments")

    p_board = sub.add_parser("board", help="Watch the public queue board")
    add_mqtt_args(p_board)

    args = parser.parse_args()
    mqtt_args = ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]

    if args.cmd == "serve":
        from .service import main as run

        run_args = list(mqtt_args)
        if args.owner_id:
            run_args += ["--owner-id", args.owner_id, "--owner-name", args.owner_name]
        if args.max_wait_minutes is not None:
            run_args += ["--max-wait-minutes", str(args.max_wait_minutes)]
        if args.sweep_every is not None:
            run_args += ["--sweep-every", str(args.sweep_every)]
        if args.log_level is not None:
            run_args += ["--log-level", args.log_level]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "customer":
        from .customer import main as run

        run_args = [
            *mqtt_args,
            "--customer-id",
            args.customer_id,
            "--name",
            args.name,
            "--contact",
            args.contact,
            "--service-id",
            args.service_id,
        ]
        if args.watch:
            run_args.append("--watch")
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "staff":
        from .staff import main as run

        _dispatch_to_module_main(run, [*mqtt_args, "--staff-id", args.staff_id, *args.staff_args])
        return

    if args.cmd == "board":
        from .staff import watch_board

        watch_board(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace)
        return


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
