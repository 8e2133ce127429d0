"""gatewaysync - Git-driven configuration sync agent for SCADA gateways."""

__version__ = "0.1.0"
