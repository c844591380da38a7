from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m ticket_display.app serve
#     python -m ticket_display.app command advance --token $ADMIN_TOKEN
#     python -m ticket_display.app watch
#     python -m ticket_display.app display
#
# `serve` reads REDIS_URL / ADMIN_TOKEN / JWT_SECRET etc. from the
# environment (see config.py); the other commands only need the broker.

import argparse
import json
import os
import sys

COMMAND_NAMES = (
    "advance",
    "retreat",
    "set_number",
    "add_passed",
    "remove_passed",
    "clear_passed",
    "add_featured",
    "remove_featured",
    "clear_featured",
    "set_sound",
    "set_public",
    "reset",
    "clear_log",
    "check_token",
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Live ticket display (Redis + MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default=os.environ.get("MQTT_HOST", "127.0.0.1"))
        p.add_argument("--mqtt-port", type=int, default=int(os.environ.get("MQTT_PORT", "1883")))
        p.add_argument("--namespace", default=os.environ.get("TICKET_NAMESPACE", "callsys/v1"))

    p_serve = sub.add_parser("serve", help="Start the sync service (needs Redis and an MQTT broker)")
    add_mqtt_args(p_serve)
    p_serve.add_argument("--redis-url", default=None)
    p_serve.add_argument("--auth-policy", choices=["downgrade", "reject"], default=None)
    p_serve.add_argument("--log-level", default=None)

    p_cmd = sub.add_parser("command", help="Send one operator command")
    add_mqtt_args(p_cmd)
    p_cmd.add_argument("op", choices=COMMAND_NAMES)
    p_cmd.add_argument("--token", default=os.environ.get("ADMIN_TOKEN"), help="admin token or bearer JWT")
    p_cmd.add_argument("--number", type=int, default=None)
    p_cmd.add_argument("--text", default=None)
    p_cmd.add_argument("--url", default=None)
    flag = p_cmd.add_mutually_exclusive_group()
    flag.add_argument("--enabled", dest="enabled", action="store_true", default=None)
    flag.add_argument("--disabled", dest="enabled", action="store_false")
    p_cmd.add_argument("--timeout", type=float, default=5.0)

    p_watch = sub.add_parser("watch", help="Print live updates of one session")
    add_mqtt_args(p_watch)
    p_watch.add_argument("--token", default=None)

    p_display = sub.add_parser("display", help="Open the Tkinter ticket display")
    add_mqtt_args(p_display)

    args = parser.parse_args()

    if args.cmd == "serve":
        from .service import main as run

        run_args = _mqtt_argv(args)
        if args.redis_url:
            run_args += ["--redis-url", args.redis_url]
        if args.auth_policy:
            run_args += ["--auth-policy", args.auth_policy]
        if args.log_level:
            run_args += ["--log-level", args.log_level]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "command":
        if not args.token:
            parser.error("--token (or ADMIN_TOKEN) is required")
        from .client import send_command

        payload: dict = {}
        if args.number is not None:
            payload["number"] = args.number
        if args.text is not None:
            payload["text"] = args.text
        if args.url is not None:
            payload["url"] = args.url
        if args.enabled is not None:
            payload["enabled"] = args.enabled

        resp = send_command(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            op=args.op,
            token=args.token,
            payload=payload,
            timeout=args.timeout,
        )
        if resp.get("type") == "result":
            print(f"[command {args.op}] ok: {json.dumps(resp.get('value'), ensure_ascii=False)}")
            return
        print(f"[command {args.op}] {resp.get('code', 'error')}: {resp.get('message')}")
        sys.exit(1)

    if args.cmd == "watch":
        from .client import main as run

        run_args = _mqtt_argv(args)
        if args.token:
            run_args += ["--token", args.token]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "display":
        from .display import main as run

        _dispatch_to_module_main(run, _mqtt_argv(args))
        return


def _mqtt_argv(args: argparse.Namespace) -> list[str]:
    return [
        "--mqtt-host",
        args.mqtt_host,
        "--mqtt-port",
        str(args.mqtt_port),
        "--namespace",
        args.namespace,
    ]


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
