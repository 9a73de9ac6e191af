"""Fake deploy progress bar."""

import random

PHASES = ["init", "baking", "verifying", "shipping"]

interval = 4500
widget_id = "progress"
type = "progress"


def run(emit):
    emit({
        "data": {
            "value": random.random() * 100,
            "max": 100,
            "label": "Deploy",
            "state": random.choice(PHASES),
        },
    })
