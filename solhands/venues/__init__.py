from .curve import CurveVenue
from .pools import PoolInfo, PumpSwapPoolLookup, RaydiumPoolLookup
from .pumpswap import PumpSwapVenue
from .quoting import SwapRequest, Venue, VenueQuote, VenueQuoter
from .raydium import RaydiumVenue

__all__ = [
    "CurveVenue",
    "PoolInfo",
    "PumpSwapPoolLookup",
    "PumpSwapVenue",
    "RaydiumPoolLookup",
    "RaydiumVenue",
    "SwapRequest",
    "Venue",
    "VenueQuote",
    "VenueQuoter",
]
