"""Scan engine: keyword matching, batching, checkpointing and the scan state machine."""
