"""Portfolio analytics: risk metrics, signals, allocations and planning."""
