"""melodex - Spotify and osu! search client."""

__version__ = "0.3.0"
