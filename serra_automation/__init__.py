"""Serra automation backend: sensor-to-actuator rule evaluation engine."""

__version__ = "0.1.0"
