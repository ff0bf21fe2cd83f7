"""Producer notification fan-out over the bus."""
