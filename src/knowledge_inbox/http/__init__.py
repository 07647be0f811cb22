"""HTTP fetching and HTML extraction helpers used by capability providers."""
