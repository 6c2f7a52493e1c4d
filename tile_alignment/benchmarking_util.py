import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Generator, Optional


@dataclass
class TimedSpan:
    name: str
    elapsed_s: float = 0.0


@contextlib.contextmanager
def debug_timing(
    span_name: str, log: Optional[logging.Logger] = None
) -> Generator[TimedSpan, None, None]:
    """Log a message to debug level with the time to run the code in this context.

    The yielded span holds the elapsed time once the context exits, also when
    the body raises.
    """
    span = TimedSpan(span_name)
    start_time = time.perf_counter()
    try:
        yield span
    finally:
        span.elapsed_s = time.perf_counter() - start_time
        (log or logging.getLogger(__name__)).debug(f"{span_name}: {span.elapsed_s:0.3f}s")
