"""Durable at-least-once queue with visibility-timeout leases."""
