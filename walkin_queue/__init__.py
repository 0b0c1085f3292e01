"""Walk-in service queue coordination engine.

Customers join a virtual line for a service and watch their live position and
estimated wait; staff start, complete or remove entries. The engine
(`QueueEngine`) is usable in-process; `walkin_queue.service` exposes it over
MQTT to:
- customer clients (join, live status view)
- staff clients (queue table, transitions, service catalog)
- a public board and an external notifier (status-change events)

Run `python -m walkin_queue.app -h` for the command line.
"""
from __future__ import annotations
