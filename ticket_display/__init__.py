"""Live ticket-number display: shared-state synchronization core.

Redis holds the authoritative state (current number, passed numbers, featured
links, flags, last-updated time, operator activity log). Operators change it
through MQTT commands; every connected display gets a snapshot on connect and
then each committed change, re-read from Redis and broadcast in full.

Components:
- `store`       atomic Redis access
- `operations`  validated mutation commands
- `broadcast`   re-read-then-publish fan-out
- `session`     per-connection lifecycle
- `service`     MQTT adapter + `serve` entrypoint

See `python -m ticket_display.app -h`.
"""
