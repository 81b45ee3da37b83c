"""Entry point: run the MindBloom API with uvicorn"""
import logging

import uvicorn

from mindbloom.api.server import create_api_application
from mindbloom.config import API_HOST, API_PORT, LOG_LEVEL

logger = logging.getLogger(__name__)

app = create_api_application()


def main() -> None:
    logger.info(f"Starting MindBloom API on {API_HOST}:{API_PORT}")
    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
