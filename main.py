"""
Comic Strip Server - Entry Point

Starts the Flask web API that turns a story plus character reference
images into a multi-panel comic strip.

Usage:
    python main.py
    python main.py --port 8080 --debug

Requires .env file with GOOGLE_API_KEY (see comic_strip/config.py for
the other settings).
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

from comic_strip import config
from web.app import app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("comic_strip")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the comic strip web API")
    parser.add_argument("--host", default=config.HOST)
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    if not config.GOOGLE_API_KEY:
        logger.error("GOOGLE_API_KEY is not set. Add it to .env before generating comics.")

    logger.info(f"Comic strip API listening on http://{args.host}:{args.port}")
    logger.info(
        f"Models: text={config.TEXT_MODEL} image={config.IMAGE_MODEL} "
        f"| failure policy: {config.FAILURE_POLICY}"
    )
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    sys.exit(main())
