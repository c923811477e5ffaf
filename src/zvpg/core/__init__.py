"""Core naming, errors and environment setup for zvpg."""
