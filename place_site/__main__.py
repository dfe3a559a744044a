# __main__.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
import sys

from .cli import main

sys.exit(main())
