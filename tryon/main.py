"""FASHN Try-On Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tryon.config import Settings, settings
from tryon.api import files as files_api
from tryon.api.v1.router import v1_router
from tryon.api.v1.health import router as health_root_router
from tryon.api.v1 import health as health_api
from tryon.api.v1 import history as history_api
from tryon.api.v1 import jobs as jobs_api
from tryon.api.v1 import predictions as predictions_api
from tryon.api.ws import job_updates as ws_api
from tryon.clients.fashn_client import FashnClient, TryOnClient
from tryon.jobs.in_process_queue import InProcessQueue
from tryon.jobs.orchestrator import TryOnOrchestrator
from tryon.jobs.store import (
    HistoryStore,
    InMemoryHistoryStore,
    InMemoryJobStore,
    InMemoryProfileImages,
    JobStore,
    ProfileImageStore,
)
from tryon.jobs.strategies import JobRunner
from tryon.notify.notifier import InProcessNotifier, JobNotifier
from tryon.processing.garment_combiner import GarmentCombiner
from tryon.services.direct_tryon import DirectTryOnService
from tryon.services.history_service import HistoryService
from tryon.storage.image_store import ImageStore, SupabaseImageStore
from tryon.storage.local_store import LocalImageStore

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes and workers need, built once per app."""
    config: Settings
    job_store: JobStore
    history_store: HistoryStore
    profile_images: ProfileImageStore
    notifier: JobNotifier
    tryon_client: TryOnClient
    image_store: ImageStore
    combiner: GarmentCombiner
    runner: JobRunner
    orchestrator: TryOnOrchestrator
    dispatcher: InProcessQueue
    history_service: HistoryService
    direct_service: DirectTryOnService


def _stores(config: Settings):
    if config.job_store_backend == "memory":
        return InMemoryJobStore(), InMemoryHistoryStore(), InMemoryProfileImages()
    if config.job_store_backend != "supabase":
        raise ValueError(f"Unknown job_store_backend: {config.job_store_backend}")

    from tryon.db.supabase_client import get_supabase
    from tryon.db.supabase_repositories import (
        SupabaseHistoryStore,
        SupabaseJobStore,
        SupabaseProfileImages,
    )

    client = get_supabase(config)
    return SupabaseJobStore(client), SupabaseHistoryStore(client), SupabaseProfileImages(client)


def _image_store(config: Settings) -> ImageStore:
    if config.storage_backend == "local":
        return LocalImageStore(
            base_dir=config.local_storage_dir,
            public_base_url=config.public_base_url,
            download_timeout=config.image_download_timeout_seconds,
        )
    if config.storage_backend != "supabase":
        raise ValueError(f"Unknown storage_backend: {config.storage_backend}")

    from tryon.db.supabase_client import get_supabase

    return SupabaseImageStore(
        get_supabase(config),
        config.supabase_storage_bucket,
        download_timeout=config.image_download_timeout_seconds,
    )


def build_services(config: Optional[Settings] = None, **overrides: Any) -> ServiceContainer:
    """Wire the service graph from settings.

    Any collaborator can be replaced by keyword: ``job_store``,
    ``history_store``, ``profile_images``, ``notifier``, ``tryon_client``,
    ``image_store``, ``combiner``.
    """
    config = config or settings
    unknown = set(overrides) - {
        "job_store", "history_store", "profile_images", "notifier",
        "tryon_client", "image_store", "combiner",
    }
    if unknown:
        raise TypeError(f"Unknown service overrides: {sorted(unknown)}")

    store_keys = ("job_store", "history_store", "profile_images")
    if all(key in overrides for key in store_keys):
        job_store, history_store, profile_images = (overrides[key] for key in store_keys)
    else:
        job_store, history_store, profile_images = _stores(config)
        job_store = overrides.get("job_store", job_store)
        history_store = overrides.get("history_store", history_store)
        profile_images = overrides.get("profile_images", profile_images)

    notifier = overrides.get("notifier") or InProcessNotifier()
    tryon_client = overrides.get("tryon_client") or FashnClient(
        api_key=config.fashn_api_key,
        base_url=config.fashn_base_url,
        model_name=config.fashn_model_name,
        poll_interval=config.fashn_poll_interval_seconds,
        request_timeout=config.fashn_request_timeout_seconds,
    )
    image_store = overrides.get("image_store") or _image_store(config)
    combiner = overrides.get("combiner") or GarmentCombiner(
        width=config.combined_garment_width,
        download_timeout=config.image_download_timeout_seconds,
    )

    runner = JobRunner(job_store, history_store, notifier, tryon_client, image_store, combiner)
    orchestrator = TryOnOrchestrator(job_store, profile_images, notifier, runner)
    dispatcher = InProcessQueue(worker_fn=orchestrator.process_job, concurrency=config.max_concurrent_jobs)
    orchestrator.set_dispatcher(dispatcher)

    return ServiceContainer(
        config=config,
        job_store=job_store,
        history_store=history_store,
        profile_images=profile_images,
        notifier=notifier,
        tryon_client=tryon_client,
        image_store=image_store,
        combiner=combiner,
        runner=runner,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        history_service=HistoryService(history_store),
        direct_service=DirectTryOnService(tryon_client, history_store),
    )


def _wire(services: Optional[ServiceContainer]) -> None:
    """Hand collaborators to the API modules (or clear them with None)."""
    jobs_api.set_orchestrator(services.orchestrator if services else None)
    history_api.set_history_service(services.history_service if services else None)
    predictions_api.set_direct_service(services.direct_service if services else None)
    health_api.set_dispatcher(services.dispatcher if services else None)
    health_api.set_notifier(services.notifier if services else None)
    ws_api.set_notifier(services.notifier if services else None)
    local_store = services.image_store if services else None
    files_api.set_local_store(local_store if isinstance(local_store, LocalImageStore) else None)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the FastAPI app. Services are built at startup unless given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services or build_services(settings)
        app.state.services = container

        logger.info("Starting FASHN Try-On Service on port %s", container.config.service_port)
        logger.info("Job store: %s, image storage: %s",
                    type(container.job_store).__name__, type(container.image_store).__name__)

        await container.dispatcher.start()
        _wire(container)
        recovered = await container.orchestrator.recover()
        logger.info("Job dispatcher started (%d job(s) recovered)", recovered)

        yield

        logger.info("Shutting down FASHN Try-On Service")
        await container.dispatcher.stop()
        await container.tryon_client.close()
        _wire(None)

    app = FastAPI(
        title="FASHN Try-On Service",
        description="Queued virtual try-on jobs with live progress updates",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    app.include_router(ws_api.router, tags=["websocket"])
    app.include_router(files_api.router, tags=["files"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tryon.main:app", host="0.0.0.0", port=settings.service_port)
