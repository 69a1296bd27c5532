"""CoopBus backend: REST API for bus cooperatives."""

__version__ = "0.1.0"
