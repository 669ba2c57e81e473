"""Action Cable protocol messages, sessions hub, encoders, metrics, JWT identification and configuration."""

__version__ = "0.1.0"