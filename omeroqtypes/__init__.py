"""OMERO ROI-based question types: authoring forms and schema upgrades."""

__version__ = "2016.1.21"
