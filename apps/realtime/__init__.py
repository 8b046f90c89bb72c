"""Realtime app package.

Pushes lifecycle events to the customers' open connections. The
session registry maps identities and watched resources to live
connections; the notifier fans each event out to them at most once,
with a bounded wait, and drops what it cannot deliver.
"""
