"""
Optimus Portfolio Analyzer.

Portfolio risk and rebalancing recommendation engine for Solana wallets,
built for consumption by automated agents.
"""

__version__ = "1.0.0"
