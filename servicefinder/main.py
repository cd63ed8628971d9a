import logging
import os

import uvicorn

from servicefinder.app import app
from servicefinder.core.config import Config

# Verbose logs while developing locally
logging.basicConfig(
    level=logging.DEBUG if Config.ENVIRONMENT == "development" else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    logger.info(f"Starting directory API on port {port} ({Config.ENVIRONMENT})")
    uvicorn.run(app, host="0.0.0.0", port=port)
