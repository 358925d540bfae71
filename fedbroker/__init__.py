"""FedBroker - OAuth2 federation broker with token exchange."""

__version__ = "0.1.0"
