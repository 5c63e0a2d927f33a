#!/usr/bin/env python3
"""Run script for taskpool."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

from taskpool.database.database import init_db

if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    uvicorn.run(
        "taskpool.api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
