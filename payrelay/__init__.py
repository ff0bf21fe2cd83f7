"""Payment confirmation relay and producer notification fan-out."""
