import threading
from collections import deque
from dataclasses import dataclass, field


@dataclass
class TrustState:
    """Cumulative suspicion for one identity (fingerprint hash)."""

    score: float = 0.0
    last_seen: float = 0.0
    recent_requests: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
