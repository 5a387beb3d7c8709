"""LTI Advantage AGS grade passback for embedded exercises."""

__version__ = "0.1.0"
