import os

import uvicorn

# Importing the app configures logging from LOG_LEVEL / LOG_FILE
from app import app
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    logger.info(f"Starting JamChat server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)
