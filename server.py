import logging
import sys

from dotenv import load_dotenv

# Settings are read at import time; load .env first.
load_dotenv()

from auth_proxy import config  # noqa: E402
from auth_proxy.mount_apps import run_server  # noqa: E402

if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr)
    logger = logging.getLogger("mcp-auth-proxy")
    logger.info("Starting MCP OAuth proxy server...")
    run_server(host=config.HOST, port=config.PORT)
    logger.info("Server stopped")
