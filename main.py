"""Run the API server and the assignment retry worker in one process."""
import asyncio
import logging
import signal
import uvicorn

from config import settings_conf
from database import init_db, close as db_close, get_pool
from realtime import manager
from workers.assignment_retry import AssignmentRetryWorker

# Configure logging
logging.basicConfig(
    level=settings_conf['log_level'],
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
retry_worker = None
server = None
should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

async def startup() -> AssignmentRetryWorker:
    """Initialize database and the retry worker."""
    logger.info("Initializing database...")
    await init_db()
    pool = await get_pool()

    logger.info("Creating assignment retry worker...")
    return AssignmentRetryWorker(pool, fanout=manager)

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
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    async def stop(self):
        """Stop the server."""
        self.server.should_exit = True

async def run_api():
    """Run the API server."""
    global server
    server = UvicornServer()
    await server.run()

async def run_retry_worker(worker: AssignmentRetryWorker):
    """Run the assignment retry worker."""
    try:
        await worker.run()
    except Exception as e:
        logger.error(f"Assignment retry worker error: {e}")
        raise

async def main():
    """Run the API server and the assignment retry worker."""
    global retry_worker, server, should_exit

    try:
        # Register signal handlers in main thread
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        retry_worker = await startup()

        tasks = [
            asyncio.create_task(run_api(), name="api"),
            asyncio.create_task(run_retry_worker(retry_worker), name="assignment_retry"),
        ]

        logger.info("All services started")

        # Wait for shutdown signal
        while not should_exit:
            await asyncio.sleep(1)

            # Check if any tasks failed
            for task in tasks:
                if task.done() and not task.cancelled():
                    exc = task.exception()
                    if exc:
                        logger.error(f"Task {task.get_name()} failed with error: {exc}")
                        should_exit = True
                        break

        logger.info("Starting cleanup...")

    except Exception as e:
        logger.error(f"Fatal error: {e}")
    finally:
        if retry_worker:
            logger.info("Stopping assignment retry worker...")
            retry_worker.stop()

        if server:
            logger.info("Stopping API server...")
            await server.stop()

        # Cancel all tasks
        for task in asyncio.all_tasks():
            if task is not asyncio.current_task() and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await manager.close()

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

if __name__ == "__main__":
    # Use uvloop if available for better performance
    try:
        import uvloop
        uvloop.install()
    except ImportError:
        pass

    # Run everything in the same event loop
    asyncio.run(main())
