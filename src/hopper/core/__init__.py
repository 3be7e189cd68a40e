"""Core infrastructure: configuration, logging, canonical hashing and the job repository."""
