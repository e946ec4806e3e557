"""kopf watch handlers; importing a module registers its handlers."""
