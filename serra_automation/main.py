"""
Entry point for the Serra automation backend.

Creates the FastAPI application, includes the API routers and starts the
background components (MQTT reading consumer, schedule runner). Run with:

    uvicorn serra_automation.main:app --reload

"""

from __future__ import annotations

import logging
import threading

from fastapi import FastAPI

from .api import api_router
from .core.config import settings, get_app_env
from .core.db import engine, SessionLocal
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .scripts.run_migrations import run_migrations_to_head
from .services.mqtt_consumer import MQTTConsumer
from .services.rule_seed import seed_demo_rules
from .services.schedules import run_schedule_runner


def create_app() -> FastAPI:
    app = FastAPI(title="Serra Automation Backend", version="0.1.0")
    app.include_router(api_router)
    app.state.mqtt_consumer = None
    app.state.schedule_runner_stop = None
    app.state.schedule_runner_thread = None

    @app.on_event("startup")
    def _init() -> None:
        setup_logging()
        logger = logging.getLogger("startup")
        env = get_app_env()
        if settings.auto_create_db:
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if settings.auto_run_migrations:
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if settings.auto_seed_rules:
            try:
                with SessionLocal() as db:
                    seed_demo_rules(db)
            except Exception as exc:
                log_exception(logger, "Seed rules failed", exc=exc)
                if env == "prod":
                    raise
        if settings.enable_mqtt_consumer:
            consumer = MQTTConsumer()
            consumer.start()
            app.state.mqtt_consumer = consumer
        if settings.enable_schedule_runner:
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_schedule_runner,
                args=(stop_event,),
                daemon=True,
                name="schedule-runner",
            )
            thread.start()
            app.state.schedule_runner_stop = stop_event
            app.state.schedule_runner_thread = thread
        logger.info("Startup complete env=%s command_queue=%s", env, settings.command_queue_backend)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        consumer = getattr(app.state, "mqtt_consumer", None)
        if consumer:
            consumer.stop()
        stop_event = getattr(app.state, "schedule_runner_stop", None)
        if stop_event:
            stop_event.set()
        thread = getattr(app.state, "schedule_runner_thread", None)
        if thread:
            thread.join(timeout=5)

    return app


app = create_app()
