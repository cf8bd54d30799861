#!/usr/bin/env python3
"""
Utility functions for GC Log Connector
Common helpers for byte formatting and key encoding
"""

import base64


def format_bytes(bytes_value: int, precision: int = 2) -> str:
    """Format bytes as human-readable string with auto-scaling (KB/MB/GB/TB)."""
    if bytes_value < 1024**2:
        return f"{bytes_value / 1024:.{precision}f} KB"
    elif bytes_value < 1024**3:
        return f"{bytes_value / 1024**2:.{precision}f} MB"
    elif bytes_value < 1024**4:
        return f"{bytes_value / 1024**3:.{precision}f} GB"
    else:
        return f"{bytes_value / 1024**4:.{precision}f} TB"


def to_base64(value: str) -> str:
    """Encode a string as standard base64 text (used for tenant ids in keys)."""
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")
