"""CLI command groups for ratechange-agent."""
