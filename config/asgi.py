"""
ASGI config for EduStream Backend
"""

import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.production')

from .routing import application  # noqa: E402,F401
