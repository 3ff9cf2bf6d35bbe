"""Administrative client for an LMS REST API: courses, groups and their lookups."""

__version__ = "0.1.0"
