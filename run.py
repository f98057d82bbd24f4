#!/usr/bin/env python3
"""topoclip - georeferenced map clips.

Starts the Flask server exposing projection, measurement and export.
"""

import logging
import os

from topoclip.config import LOG_LEVEL
from topoclip.server import app

PORT = int(os.environ.get("PORT", 5050))
HOST = os.environ.get("HOST", "127.0.0.1")

logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s: %(message)s")


if __name__ == "__main__":
    app.run(host=HOST, port=PORT, debug=False)
