import logging

from .entrypoints.fastapi_app import create_app
from .jobs.scheduler import build_scheduler

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()
scheduler = build_scheduler()


@app.on_event("startup")
async def _start_scheduler() -> None:
    scheduler.start()


@app.on_event("shutdown")
async def _stop_scheduler() -> None:
    scheduler.shutdown(wait=False)
