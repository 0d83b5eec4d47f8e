# charla/factory.py
import logging
from dataclasses import dataclass
from typing import Optional

from charla.config_loader import Settings, load_settings
from charla.queue.sqlite_queue import SqliteWorkQueue
from charla.recovery.observer import StallObserver
from charla.recovery.reconciler import RecoveryReconciler
from charla.router.base import BaseModel
from charla.router.claude import ClaudeAdapter
from charla.router.gemini import GeminiAdapter
from charla.router.router import Router
from charla.storage.repository import Repository
from charla.transcription.gemini_transcriber import GeminiTranscriber
from charla.transcription.processor import TranscriptionProcessor
from charla.translation.engine import TranslationBatchEngine
from charla.translation.orchestrator import TranslationOrchestrator

logger = logging.getLogger(__name__)

_ADAPTERS = {
    "claude": ClaudeAdapter,
    "gemini": GeminiAdapter,
}


@dataclass
class App:
    """
    Todas las piezas ya conectadas. Las que dependen de modelos son None
    cuando se construye sin ellos (with_models=False).
    """
    settings:     Settings
    repo:         Repository
    queue:        SqliteWorkQueue
    reconciler:   RecoveryReconciler
    observer:     StallObserver
    router:       Optional[Router]                  = None
    engine:       Optional[TranslationBatchEngine]  = None
    orchestrator: Optional[TranslationOrchestrator] = None
    processor:    Optional[TranscriptionProcessor]  = None


def build_app(
    db_path:       Optional[str] = None,
    queue_db_path: Optional[str] = None,
    config_path:   Optional[str] = None,
    with_models:   bool          = True,
) -> App:
    """
    Ensambla la aplicación con todas sus dependencias.
    Punto de entrada único para el CLI y los tests de integración.

    with_models=False sirve a los comandos que solo tocan la base de
    datos y la cola (recover, submit, queue-stats): no exige config.
    """
    settings = load_settings(config_path, required=with_models)
    repo     = Repository(db_path=db_path)
    queue    = SqliteWorkQueue(db_path=queue_db_path, default_policy=settings.recovery.retry_policy)

    app = App(
        settings   = settings,
        repo       = repo,
        queue      = queue,
        reconciler = RecoveryReconciler(repo, queue, settings.recovery),
        observer   = StallObserver(queue),
    )
    if not with_models:
        return app

    models     = _build_models(repo, settings)
    app.router = Router(models)
    app.engine = TranslationBatchEngine(app.router, settings.translation)
    app.orchestrator = TranslationOrchestrator(
        store         = repo,
        engine        = app.engine,
        translated_by = models[0].name,
    )

    transcriber = _build_transcriber(settings)
    if transcriber is not None:
        app.processor = TranscriptionProcessor(
            job_store   = repo,
            transcriber = transcriber,
            summarizer  = app.router,   # usa failover del router
        )
    return app


def _build_models(repo: Repository, settings: Settings) -> list[BaseModel]:
    """
    Construye los adaptadores disponibles a partir del config.
    Si un adaptador no tiene api_key configurada, lo omite con un aviso.
    """
    models = []

    for config in settings.models:
        adapter_class = _ADAPTERS.get(config.name)
        if not adapter_class:
            logger.warning("Modelo desconocido en el config: %s", config.name)
            continue
        if not config.api_key:
            logger.warning("%s: sin api_key, omitiendo", config.name)
            continue
        models.append(adapter_class(config, repo))

    if not models:
        raise RuntimeError(
            "Ningún modelo configurado. "
            "Revisa ~/.charla/config.yaml y tus variables de entorno."
        )

    return models


def _build_transcriber(settings: Settings) -> Optional[GeminiTranscriber]:
    api_key = settings.transcription.api_key
    if not api_key:
        gemini  = next((m for m in settings.models if m.name == "gemini"), None)
        api_key = gemini.api_key if gemini else None
    if not api_key:
        logger.warning("Sin api_key de Gemini: el worker no podrá transcribir")
        return None
    return GeminiTranscriber(api_key=api_key, model_id=settings.transcription.model_id)
