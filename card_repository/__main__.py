# -*- coding: utf-8 -*-

"""
角色卡仓库
__main__.py - 支持 python -m card_repository
"""

import sys

from .cli import main

sys.exit(main())
