import time


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000):
        self.current = start

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        self.current += seconds
        return self.current

    def set(self, value: int):
        self.current = value
