"""EduConnect: school management JSON API."""

__version__ = "0.1.0"
