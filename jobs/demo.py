"""Minimal job: one message a minute."""

interval = 60_000
widget_id = "demo-job"
type = "message"


def run(emit):
    emit({"data": {"text": "Demo job heartbeat"}})
