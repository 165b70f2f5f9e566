"""FileBox — secure file intake, screening and archiving."""

__version__ = "1.0.0"
