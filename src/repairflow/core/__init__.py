"""Core infrastructure: configuration, logging, failure classification."""
