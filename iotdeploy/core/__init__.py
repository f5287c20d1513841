"""Lifecycle core: configuration, polling, identity and the two state machines."""
