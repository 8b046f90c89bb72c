"""Scheduling app package.

This app encapsulates the appointment domain: resources with a finite
capacity, the services customers book on them, the slot ledger that
admits reservations without ever overbooking, and the appointment
lifecycle (pending, confirmed, cancelled, completed). Admission is
atomic per resource; domain events are published after commit.
"""
