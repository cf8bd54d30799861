"""
Shared test helpers
"""

import gzip
import time
from pathlib import Path


GC_LINES = (
    "2017-03-28T10:15:30.123+0000: 0.245: [GC (Allocation Failure) 65536K->1234K(251392K), 0.0031 secs]\n"
    "2017-03-28T10:15:31.456+0000: 1.578: [GC (Allocation Failure) 66770K->1300K(251392K), 0.0022 secs]\n"
)


def wait_until(condition, timeout=10, interval=0.05, description="condition"):
    """
    Poll until condition is true or timeout expires

    Args:
        condition: Callable that returns bool
        timeout: Maximum seconds to wait
        interval: Seconds between checks
        description: Description for error message

    Returns:
        bool: True if condition met, False if timeout
    """
    start = time.time()
    while time.time() - start < timeout:
        if condition():
            return True
        time.sleep(interval)

    elapsed = time.time() - start
    print(f"Timeout after {elapsed:.1f}s waiting for: {description}")
    return False


def write_artifact(path: Path, text: str = GC_LINES) -> Path:
    """Write a gzip artifact like the ones SyncEngine stages"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, 'wt') as f:
        f.write(text)
    return path
