"""
Common utilities shared by the assessment engine: logging, error handling,
serialization, authentication and performance tracking.
"""
