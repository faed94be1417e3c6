"""
TaskChat - real-time messaging sync engine for the task collaboration client.
"""

__version__ = "0.1.0"
