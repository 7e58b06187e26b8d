"""Main entry point - runs the engines and the API."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from custodex.api.app import create_app
from custodex.config import Settings, get_settings
from custodex.container import ServiceContainer
from custodex.errors import ConfigurationError
from custodex.scheduler import Scheduler

logger = logging.getLogger(__name__)


class Application:
    """Main application that runs both engines and the API."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.container: Optional[ServiceContainer] = None
        self.scheduler: Optional[Scheduler] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services and block until shutdown."""
        logger.info("Starting Custodex...")
        logger.info(f"Environment: {self.settings.environment}")

        self.settings.validate_for_service()
        if self.settings.dry_run:
            logger.warning("DRY_RUN enabled - no real transactions will be sent")

        self.container = ServiceContainer.from_settings(self.settings)

        # Initialize database
        await self.container.database.create_all()
        logger.info("Database initialized")

        tokens = ", ".join(t.symbol for t in self.settings.tokens) or "none"
        logger.info(f"Monitoring tokens: {tokens}")

        self.scheduler = Scheduler.for_container(self.container)
        self.scheduler.start()

        api_task = asyncio.create_task(self._run_api())
        logger.info("API task created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        api_task.cancel()
        await asyncio.gather(api_task, return_exceptions=True)

        await self._cleanup()

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(self.container, self.scheduler)
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            self.shutdown()
            raise

    async def _cleanup(self):
        """Stop the engines and release resources."""
        logger.info("Cleaning up...")

        if self.scheduler:
            # Lets an in-flight deposit scan or withdrawal finish
            await self.scheduler.stop()

        if self.container:
            await self.container.close()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.debug)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = Application(settings)

    # Setup signal handlers
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
