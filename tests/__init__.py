"""
Test Suite for the Review Engine

Covers the status catalog, transition guard, SLA calculator, storage,
external sync, reconciliation, workflow and HTTP routes.
"""
