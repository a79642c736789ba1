"""
pbkeeper - a supervisor for an embedded PocketBase backend.
"""
__version__ = "1.0.0"
