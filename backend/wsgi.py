#!/usr/bin/env python3
"""
Gunicorn entry point for the trip integrity dashboard API.

    gunicorn --bind 127.0.0.1:5001 --workers 2 wsgi:application

Configuration (database URL, fleet API credentials, scan limits) is read by
utils.config when the app is created, from .env locally or SSM in production.
"""

import os
import sys

SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src')
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from api.app import create_app  # noqa: E402

application = create_app()
