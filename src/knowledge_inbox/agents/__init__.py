"""Pipeline agents: one enrichment step each, chained per entry type."""
