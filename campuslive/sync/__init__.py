"""Client-side view synchronisation: merge, stores, live lists, presence."""
