#!/usr/bin/env python3
"""Run the account notification web server."""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import LOG_FORMAT, LOG_LEVEL, PORT
from web import create_app

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=PORT, use_reloader=False)
