"""Small helpers: delayed signals and random container identifiers."""

from __future__ import annotations

import random
import string
import threading
from typing import Callable

_NAME_ALPHABET = string.ascii_letters + string.digits


def timeout(seconds: float) -> tuple[threading.Event, Callable[[], None]]:
    """Return an event and a trigger that sets the event after ``seconds``."""
    event = threading.Event()

    def trigger() -> None:
        timer = threading.Timer(seconds, event.set)
        timer.daemon = True
        timer.start()

    return event, trigger


def random_container_name() -> str:
    """Return a random lower-case container name that starts with a letter."""
    suffix = "".join(random.choices(_NAME_ALPHABET, k=10)).lower()
    return f"c-{suffix}"


def random_port() -> str:
    """Return a random port in 8000-8999; availability is not checked."""
    return str(random.getrandbits(16) % 1000 + 8000)