"""Detection, scoring and simulated portfolio engine for short-lived DeFi yield pools."""

__version__ = "0.1.0"
