"""Admin dashboard and Telegram storefront for digital account credentials."""

__version__ = "1.0.0"
