# __init__.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Place: serve a folder as a small web site, with dynamic routes that are
reloaded whenever they change.
"""
VERSION = "1.0.0"
__version__ = VERSION

from .config import ServerOptions
from .errors import PlaceError
from .server import LifecycleState, Place

__all__ = ["VERSION", "LifecycleState", "Place", "PlaceError", "ServerOptions"]
