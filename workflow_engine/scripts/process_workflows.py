#!/usr/bin/env python3
"""
Script para procesar transiciones programadas y deadlines de aprobaciones.

Pensado para cron o un job programado cuando el DeadlineScanner no corre
dentro del proceso de la aplicación.

Usage:
    workflow-process
    workflow-process --dry-run
    workflow-process --plugin myapp.workflows:build_plugin --verbose
"""

import argparse
import asyncio
import importlib
import logging
import sys

from workflow_engine.config import get_settings
from workflow_engine.core.logger import configure_logging
from workflow_engine.database import dispose_engine, get_async_db_context, get_session_factory
from workflow_engine.registry import WorkflowPlugin, build_registries
from workflow_engine.repositories import WorkflowRepository
from workflow_engine.services.engine import WorkflowEngine
from workflow_engine.tasks import InMemoryResumeQueue, ResumeJob
from workflow_engine.tasks.resume_task import ResumeTask

logger = logging.getLogger(__name__)


def load_plugin(path: str) -> WorkflowPlugin:
    """Import "package.module:factory" and call the factory."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Plugin path must look like 'package.module:factory', got '{path}'")
    factory = getattr(importlib.import_module(module_name), attribute)
    return factory()


def build_engine(plugin_paths: list[str], resume_queue: InMemoryResumeQueue) -> WorkflowEngine:
    settings = get_settings()
    plugins = [load_plugin(path) for path in plugin_paths]
    registries = build_registries(*plugins, webhook_timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    return WorkflowEngine(get_session_factory(), registries, settings=settings, resume_queue=resume_queue)


async def count_active_instances() -> int:
    async with get_async_db_context() as session:
        return await WorkflowRepository(session).count_active_instances()


async def drain_resume_jobs(queue: InMemoryResumeQueue, task: ResumeTask) -> tuple[int, int]:
    """
    Run the resume jobs left by this pass, including the ones they enqueue.

    Returns:
        (handled, failed) job counts
    """
    handled = 0
    failed = 0

    async def handle_one(job: ResumeJob) -> None:
        nonlocal handled, failed
        try:
            await task.handle(job)
            handled += 1
        except Exception as e:
            logger.error(f"Resume job for instance {job.instance_id} failed: {e}", exc_info=True)
            failed += 1

    await queue.drain(handle_one)
    return handled, failed


async def run(dry_run: bool, plugin_paths: list[str]) -> int:
    resume_queue = InMemoryResumeQueue()
    try:
        engine = build_engine(plugin_paths, resume_queue)
    except Exception as e:
        logger.error(f"Failed to initialize workflow engine: {e}", exc_info=True)
        return 1

    try:
        if dry_run:
            active = await count_active_instances()
            print(f"DRY RUN: {active} active workflow instances")
            return 0

        result = await engine.process_scheduled_transitions()
        resumed, failed = await drain_resume_jobs(resume_queue, ResumeTask(engine))
        print(f"Processed: {result.processed}")
        print(f"Escalated: {result.escalated}")
        print(f"Resume jobs: {resumed} handled, {failed} failed")
        print(f"Errors: {len(result.errors)}")
        for error in result.errors[:10]:
            print(f"  - {error}")
        if len(result.errors) > 10:
            print(f"  ... y {len(result.errors) - 10} errores más")
        return 0
    finally:
        await dispose_engine()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Procesa transiciones programadas y deadlines de aprobaciones")
    parser.add_argument("--dry-run", action="store_true", help="Solo informa la cantidad de instancias activas")
    parser.add_argument("--verbose", "-v", action="store_true", help="Logging detallado (DEBUG)")
    parser.add_argument(
        "--plugin",
        action="append",
        default=[],
        dest="plugins",
        metavar="MODULE:FACTORY",
        help="Factory de plugin a registrar (repetible)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(level="DEBUG" if args.verbose else settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    return asyncio.run(run(args.dry_run, args.plugins))


if __name__ == "__main__":
    sys.exit(main())
