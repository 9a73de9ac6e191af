"""Random throughput metric."""

import random

interval = 5000
widget_id = "metric-1"
type = "metric"


def run(emit):
    value = random.random() * 1000
    delta = random.random() * 10 - 5
    emit({
        "data": {
            "label": "Random throughput",
            "value": f"{value:.2f}",
            "delta": f"{delta:.2f}%",
        },
    })
