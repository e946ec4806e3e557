"""Reconciliation engine: stores, mode detection, reconciler and worker pool."""
