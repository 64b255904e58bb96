"""
Utils package: shared tools for the whole project.
Includes logging, file I/O (JSON/Excel/CSV) and small helper routines.
"""

from .logger import app_logger, set_console_level
from .file_io import FileHandler
from .helpers import OMRUtils

__all__ = ['app_logger', 'set_console_level', 'FileHandler', 'OMRUtils']
