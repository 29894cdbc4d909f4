# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
"""Scriptable stand-in for a real worker, run as a subprocess by tests.

Speaks the newline-delimited JSON protocol on stdin/stdout. Behaviour is
controlled through environment variables:

- STUB_EXIT_AT_START: exit immediately with this code
- STUB_READY_DELAY: seconds to sleep before sending ``ready``
- STUB_NO_READY=1: never send ``ready``
- STUB_NOISE=1: print a non-JSON line on stdout and a line on stderr at startup
- STUB_IGNORE_EXIT=1: ignore the ``exit`` command
- STUB_IGNORE_TERM=1: ignore SIGTERM
- STUB_LOG_FILE: append every received line to this file

Commands:
- ``exit``: exit 0
- ``echo``: respond with the command data
- ``whoami``: respond with the environment tag and sanitized variables
- ``emit_event``: send ``data["event"]`` as an event, then respond
- ``report_error``: send an error message, then respond
- ``crash``: exit with ``data["code"]`` without responding
- ``sleep``: sleep ``data["seconds"]`` then respond
- ``garbage``: write a malformed structured line, then respond
- anything else: ``{"status": "success", "type": <type>}``
"""

import json
import os
import signal
import sys
import time


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def log_line(line):
    path = os.environ.get("STUB_LOG_FILE")
    if path:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")


def respond(msg_id, payload):
    if msg_id is not None:
        send({"type": "response", "id": msg_id, "response": payload})


def handle(command):
    msg_type = command.get("type")
    msg_id = command.get("id")
    data = command.get("data") or {}

    if msg_type == "exit":
        if os.environ.get("STUB_IGNORE_EXIT") == "1":
            return
        sys.exit(0)
    elif msg_type == "echo":
        respond(msg_id, data)
    elif msg_type == "whoami":
        respond(msg_id, {
            "environment": os.environ.get("WORKER_ENVIRONMENT"),
            "pythonnousersite": os.environ.get("PYTHONNOUSERSITE"),
            "virtual_env": os.environ.get("VIRTUAL_ENV"),
            "pythonpath": os.environ.get("PYTHONPATH"),
            "cwd": os.getcwd(),
            "pid": os.getpid(),
        })
    elif msg_type == "emit_event":
        send({"type": "event", "event": data.get("event", {})})
        respond(msg_id, {"status": "success"})
    elif msg_type == "report_error":
        send({"type": "error", "message": data.get("message", "boom")})
        respond(msg_id, {"status": "success"})
    elif msg_type == "crash":
        sys.stdout.flush()
        os._exit(int(data.get("code", 1)))
    elif msg_type == "sleep":
        time.sleep(float(data.get("seconds", 0)))
        respond(msg_id, {"status": "success", "slept": data.get("seconds", 0)})
    elif msg_type == "garbage":
        sys.stdout.write('{"type": "response", "id": \n')
        sys.stdout.flush()
        respond(msg_id, {"status": "success"})
    else:
        respond(msg_id, {"status": "success", "type": msg_type})


def main():
    exit_code = os.environ.get("STUB_EXIT_AT_START")
    if exit_code:
        sys.stderr.write("stub worker: failing at start\n")
        sys.stderr.flush()
        sys.exit(int(exit_code))

    if os.environ.get("STUB_IGNORE_TERM") == "1":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    if os.environ.get("STUB_NOISE") == "1":
        sys.stdout.write("UserWarning: this is not protocol traffic\n")
        sys.stdout.flush()
        sys.stderr.write("stub worker: loading\n")
        sys.stderr.flush()

    delay = float(os.environ.get("STUB_READY_DELAY", "0") or 0)
    if delay:
        time.sleep(delay)

    if os.environ.get("STUB_NO_READY") != "1":
        send({"type": "ready"})

    for line in sys.stdin:
        log_line(line)
        if not line.strip():
            continue
        try:
            command = json.loads(line)
        except ValueError:
            sys.stderr.write("stub worker: bad input line\n")
            sys.stderr.flush()
            continue
        handle(command)


if __name__ == "__main__":
    main()
