"""Task lifecycle and visibility core (status, scoping, aggregates, live views)."""
