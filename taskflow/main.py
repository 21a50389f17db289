import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

import taskflow.core.logging_config  # noqa: F401  Centralized logging (must be first)
from taskflow.api.scheduler import router as scheduler_router
from taskflow.api.workflow import router as workflow_router
from taskflow.core.config import settings
from taskflow.core.db import init_db
from taskflow.core.engine import get_engine
from taskflow.core.mq import MQService
from taskflow.core.scheduler import SchedulerService
from taskflow.interfaces.telegram import run_telegram_bot, stop_telegram_bot

logger = logging.getLogger("taskflow.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    await init_db()
    engine = get_engine()
    configs = await engine.configs.get_all()
    for config in configs:
        logger.info(
            f"Workflow {config.kind.value}: enabled={config.enabled} at {config.time_of_day} {config.timezone}"
        )

    # Telegram polling handles the inline keyboard callbacks
    if settings.PUSH_BACKEND.lower() == "telegram":
        asyncio.create_task(run_telegram_bot())

    if settings.SCHEDULER_ENABLED:
        await SchedulerService.get_instance().start()
    else:
        logger.info("SCHEDULER_ENABLED is false, relying on an external trigger.")

    yield

    # Shutdown logic
    await SchedulerService.get_instance().stop()
    await stop_telegram_bot()
    await MQService.close()


app = FastAPI(title="TaskFlow Workflow API", version="1.0.0", lifespan=lifespan)

app.include_router(workflow_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    return {"message": "TaskFlow workflow notifier is running"}
