"""StaySync - PMS availability and pricing synchronization engine."""

__version__ = "1.0.0"
