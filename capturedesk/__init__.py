"""capturedesk: capture inbox, batch publisher and newsletter digests."""

__version__ = "0.1.0"
