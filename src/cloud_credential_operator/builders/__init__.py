"""Builders for cloud backend clients."""
