"""
GC Log Connector
Ships JVM garbage-collection logs to object storage
"""

__version__ = "1.0.0"
