"""Shared recording-studio booking engine.

Availability is computed locally from a cached copy of the booking table;
the copy is written optimistically and reconciled against the remote
store after every mutation and on a polling interval.
"""
