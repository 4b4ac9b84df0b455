"""solhands: swap execution against the Pump.fun curve, PumpSwap and Raydium."""

__version__ = "0.1.0"

__all__ = ["__version__"]
