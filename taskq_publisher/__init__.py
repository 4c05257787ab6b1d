"""
TaskQ Redis Publisher

HTTP gateway that appends JSON payloads to Redis lists (task queues),
tagging every request with a time-ordered unique id for log correlation.
"""

__version__ = "0.1.0"
__author__ = "YuDev"
__description__ = "TaskQ Redis Publisher"
