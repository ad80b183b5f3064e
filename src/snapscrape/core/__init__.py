"""Core infrastructure: exceptions, logging and key-value storage."""
