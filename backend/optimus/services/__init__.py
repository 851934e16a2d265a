"""External data adapters: pricing and market-data feeds."""
