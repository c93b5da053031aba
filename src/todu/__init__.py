"""todu: task records with local key/value persistence and cross-instance sync."""

__version__ = "0.1.0"
