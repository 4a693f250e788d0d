"""Shared kernel: severities, channels, events, errors and timing primitives."""
