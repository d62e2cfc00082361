"""Command line interface for running the API server."""
import argparse
import asyncio
import logging
import uvicorn

from config import settings_conf
from database import init_db, close as db_close

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings_conf['log_level'].upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level=settings_conf['log_level'].lower()
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        """Serve until uvicorn receives a shutdown signal."""
        await self.server.serve()


async def main(force_recreate: bool = False):
    """Initialize the database and run the API server until SIGINT/SIGTERM."""
    try:
        logger.info("Initializing database...")
        await init_db(force_recreate=force_recreate)

        server = UvicornServer(host=settings_conf['api_host'], port=settings_conf['api_port'])
        logger.info(f"Serving API on {settings_conf['api_host']}:{settings_conf['api_port']}")
        await server.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        logger.info("Closing database connections...")
        await db_close()
        logger.info("Cleanup complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the marketplace API server")
    parser.add_argument('--force-recreate', action='store_true',
                        help="Drop all tables and install the latest schema")
    args = parser.parse_args()
    asyncio.run(main(force_recreate=args.force_recreate))
