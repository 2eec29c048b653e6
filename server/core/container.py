"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from services.job_queue import JobQueue
from services.actions import ActionRegistry
from services.actions.gateway import BasicsClient
from services.automation.executor import WorkflowExecutor
from services.automation.recorder import RunRecorder
from services.automation.triggers import TriggerRegistry
from services.automation.dispatcher import EventDispatcher
from services.automation.engine import AutomationEngine


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    database = providers.Singleton(
        Database,
        settings=settings
    )

    job_queue = providers.Singleton(
        JobQueue,
        timezone=settings.provided.scheduler_timezone,
        max_attempts=settings.provided.job_max_attempts,
        retry_delay=settings.provided.job_retry_delay,
        database=database
    )

    # Integrations
    basics_client = providers.Singleton(
        BasicsClient,
        base_url=settings.provided.basicos_api_url,
        timeout=settings.provided.action_timeout
    )

    action_registry = providers.Singleton(
        ActionRegistry,
        settings=settings,
        database=database,
        client=basics_client
    )

    # Automation engine
    workflow_executor = providers.Singleton(
        WorkflowExecutor,
        registry=action_registry
    )

    run_recorder = providers.Singleton(
        RunRecorder,
        database=database,
        run_timeout=settings.provided.run_timeout
    )

    trigger_registry = providers.Singleton(
        TriggerRegistry,
        database=database,
        job_queue=job_queue,
        timezone=settings.provided.scheduler_timezone
    )

    event_dispatcher = providers.Singleton(
        EventDispatcher,
        database=database,
        job_queue=job_queue
    )

    automation_engine = providers.Singleton(
        AutomationEngine,
        settings=settings,
        database=database,
        job_queue=job_queue,
        executor=workflow_executor,
        recorder=run_recorder,
        triggers=trigger_registry,
        dispatcher=event_dispatcher
    )


# Global container instance
container = Container()
