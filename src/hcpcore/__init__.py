"""HCP Core - signed, content-addressed provenance manifests for directory trees."""

__version__ = "0.1.0"
