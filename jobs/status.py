"""Rotating service status."""

import random

STATES = [
    {"state": "ok", "message": "All systems nominal", "detail": "No incidents"},
    {"state": "warn", "message": "Latency elevated", "detail": "us-east under load"},
    {"state": "error", "message": "Deploy halted", "detail": "Rollback queued"},
]

interval = 6000
widget_id = "status"
type = "status"


def run(emit):
    emit({"data": dict(random.choice(STATES))})
