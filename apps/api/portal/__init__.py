"""PixelDev portal API package."""
