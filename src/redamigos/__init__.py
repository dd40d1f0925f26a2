"""Red de Amigos - referral network tracking for campaign volunteers."""

__version__ = "0.1.0"
