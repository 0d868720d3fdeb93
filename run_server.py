import uvicorn
import logging
import os
from dotenv import dotenv_values

# Suppress uvicorn's default logging; requests are logged by the app middleware
uvicorn_loggers = [
    logging.getLogger("uvicorn"),
    logging.getLogger("uvicorn.error"),
    logging.getLogger("uvicorn.access"),
    logging.getLogger("uvicorn.asgi"),
]

for uvicorn_logger in uvicorn_loggers:
    # Only show ERROR and CRITICAL
    uvicorn_logger.setLevel(logging.ERROR)
    # Remove handlers to prevent duplicate output
    uvicorn_logger.handlers = []

config = dotenv_values(".env")

# Environment variables take precedence over .env
INDEXORDER_HOST = os.getenv("INDEXORDER_HOST", config.get("INDEXORDER_HOST", "127.0.0.1"))
INDEXORDER_PORT = int(os.getenv("INDEXORDER_PORT", config.get("INDEXORDER_PORT", "3001")))

if __name__ == "__main__":
    uvicorn.run(
        "indexorder.server.main:app",
        host=INDEXORDER_HOST,
        port=INDEXORDER_PORT,
        reload=False,
        access_log=False,
        log_config=None
    )
