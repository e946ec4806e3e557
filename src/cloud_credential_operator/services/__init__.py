"""Cloud backend clients."""
