# charla/cli.py
import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from charla.factory import App, build_app
from charla.queue.models import TRANSCRIBE_TASK, TaskState, TranscriptionPayload
from charla.queue.worker import QueueWorker
from charla.router.router import AllModelsExhaustedError
from charla.translation.locales import SUPPORTED_LOCALES, UnsupportedLocaleError
from charla.translation.orchestrator import TranscriptionNotFoundError


# Carga .env una sola vez, antes que cualquier otra cosa
load_dotenv()

# A partir de este número de tareas fallidas la cola se considera enferma
_UNHEALTHY_FAILED_THRESHOLD = 100


# ------------------------------------------------------------------
# Grupo raíz
# ------------------------------------------------------------------

@click.group()
@click.version_option(package_name="charla")
@click.option(
    "--config", "config_path",
    default = None,
    type    = click.Path(dir_okay=False),
    help    = "Ruta al config YAML (por defecto ~/.charla/config.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Muestra logs de depuración.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """
    Charla: transcripción de conversaciones con recuperación de jobs
    y traducción por lotes.
    """
    logging.basicConfig(
        level  = logging.DEBUG if verbose else logging.INFO,
        format = "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    ctx.obj = {"config_path": config_path}


# ------------------------------------------------------------------
# charla worker
# ------------------------------------------------------------------

@main.command()
@click.pass_context
def worker(ctx: click.Context):
    """Procesa la cola de transcripciones y recupera jobs huérfanos al arrancar."""
    app = _build(ctx, with_models=True)
    if app.processor is None:
        _abort("El worker necesita una api_key de Gemini para transcribir.")

    settings = app.settings.worker
    queue_worker = QueueWorker(
        queue             = app.queue,
        handlers          = {TRANSCRIBE_TASK: app.processor.handle},
        concurrency       = settings.concurrency,
        poll_interval     = settings.poll_interval_seconds,
        lock_seconds      = settings.lock_seconds,
        stalled_interval  = settings.stalled_interval_seconds,
        max_stalled_count = settings.max_stalled_count,
    )

    async def run() -> None:
        app.observer.attach()
        recovery = app.reconciler.start()
        try:
            await queue_worker.run()
        finally:
            recovery.cancel()

    click.echo(f"[charla] Worker {queue_worker.worker_id} escuchando la cola. Ctrl+C para salir.")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\n[charla] Worker detenido.")


# ------------------------------------------------------------------
# charla recover
# ------------------------------------------------------------------

@main.command()
@click.pass_context
def recover(ctx: click.Context):
    """Ejecuta ahora una pasada de recuperación de jobs huérfanos."""
    app    = _build(ctx, with_models=False)
    report = asyncio.run(app.reconciler.reconcile_on_startup())

    click.echo(f"[charla] Jobs en PROCESSING : {report.found}")
    click.echo(f"[charla]   Recuperados      : {len(report.recovered)}")
    click.echo(f"[charla]   Omitidos         : {len(report.skipped)}")
    if report.failed:
        click.echo(click.style(
            f"[charla]   Con error        : {len(report.failed)} ({', '.join(report.failed)})",
            fg="yellow",
        ))


# ------------------------------------------------------------------
# charla submit
# ------------------------------------------------------------------

@main.command()
@click.option("--user", "user_id", required=True, help="Id del usuario dueño del job")
@click.option("--file", "file_url", required=True, help="Ruta local o URI (gs://, https://) del audio")
@click.option("--context", default=None, help="Contexto libre para la transcripción")
@click.option("--template", "templates", multiple=True, help="Plantilla de análisis (repetible)")
@click.pass_context
def submit(ctx: click.Context, user_id: str, file_url: str, context: str | None, templates: tuple[str, ...]):
    """Crea un job PENDING y lo encola para transcribir."""
    _validate_audio(file_url)
    app = _build(ctx, with_models=False)

    async def run() -> str:
        job_id = await app.repo.create_job(
            user_id            = user_id,
            file_url           = file_url,
            context            = context,
            selected_templates = list(templates),
        )
        payload = TranscriptionPayload(
            job_id             = job_id,
            user_id            = user_id,
            file_url           = file_url,
            context            = context,
            selected_templates = list(templates),
        )
        await app.queue.enqueue(
            TRANSCRIBE_TASK, payload.to_dict(),
            task_id = job_id,
            policy  = app.settings.recovery.retry_policy,
        )
        return job_id

    job_id = asyncio.run(run())
    click.echo(f"[charla] Job encolado: {job_id}")


# ------------------------------------------------------------------
# charla translate
# ------------------------------------------------------------------

@main.command()
@click.option("--job", "job_id", required=True, help="Id de la transcripción")
@click.option("--user", "user_id", required=True, help="Id del usuario dueño")
@click.option("--to", "locale", required=True, metavar="LOCALE", help="Idioma destino (ej: es-ES)")
@click.option("--force", is_flag=True, help="Borra las traducciones existentes y retraduce")
@click.option("--no-summary", is_flag=True, help="No traduce el resumen")
@click.option("--no-assets", is_flag=True, help="No traduce los análisis")
@click.option("--asset", "asset_ids", multiple=True, help="Traduce solo estos análisis (repetible)")
@click.pass_context
def translate(
    ctx:        click.Context,
    job_id:     str,
    user_id:    str,
    locale:     str,
    force:      bool,
    no_summary: bool,
    no_assets:  bool,
    asset_ids:  tuple[str, ...],
):
    """Traduce el resumen y los análisis de una conversación."""
    app = _build(ctx, with_models=True)

    try:
        result = asyncio.run(app.orchestrator.translate_conversation(
            job_id            = job_id,
            user_id           = user_id,
            target_locale     = locale,
            translate_summary = not no_summary,
            translate_assets  = not no_assets,
            asset_ids         = list(asset_ids) or None,
            force_retranslate = force,
        ))

    except (UnsupportedLocaleError, TranscriptionNotFoundError) as e:
        _abort(str(e))

    except AllModelsExhaustedError as e:
        _error(
            f"Sin modelos disponibles. {e}\n"
            f"Las traducciones ya guardadas se conservan; "
            f"reejecuta el comando para completar el resto."
        )
        sys.exit(2)

    click.echo(f"[charla] ✓ Traducción al {result.locale_name} ({result.locale_code})")
    click.echo(f"[charla]   Traducciones nuevas : {result.count}")
    for translation in result.translations:
        click.echo(f"[charla]     {translation.source_type.value:<8} {translation.source_id}")


# ------------------------------------------------------------------
# charla status
# ------------------------------------------------------------------

@main.command()
@click.option("--job", "job_id", required=True, help="Id de la transcripción")
@click.option("--user", "user_id", required=True, help="Id del usuario dueño")
@click.pass_context
def status(ctx: click.Context, job_id: str, user_id: str):
    """Muestra las traducciones disponibles de una conversación."""
    app = _build(ctx, with_models=True)

    try:
        result = asyncio.run(app.orchestrator.get_translation_status(job_id, user_id))
    except TranscriptionNotFoundError as e:
        _abort(str(e))

    click.echo(f"[charla] Idioma original  : {result.original_locale or 'desconocido'}")
    click.echo(f"[charla] Idioma preferido : {result.preferred_locale}")
    if not result.available_locales:
        click.echo("[charla] Sin traducciones.")
        return

    for locale in result.available_locales:
        summary = "sí" if locale.has_summary_translation else "no"
        click.echo(
            f"[charla]   {locale.code:<6} {locale.native_name:<20} "
            f"resumen: {summary:<2}  análisis: {locale.translated_asset_count}/{locale.total_asset_count}"
        )


# ------------------------------------------------------------------
# charla queue-stats
# ------------------------------------------------------------------

@main.command("queue-stats")
@click.pass_context
def queue_stats(ctx: click.Context):
    """Cuenta las tareas de la cola por estado."""
    app    = _build(ctx, with_models=False)
    counts = asyncio.run(app.queue.get_counts())

    for state in TaskState:
        click.echo(f"[charla] {state.value:<10}: {counts.get(state, 0)}")

    failed = counts.get(TaskState.FAILED, 0)
    if failed >= _UNHEALTHY_FAILED_THRESHOLD:
        click.echo(click.style(
            f"[charla] ⚠ Cola no saludable: {failed} tareas fallidas", fg="yellow",
        ))
    else:
        click.echo("[charla] ✓ Cola saludable")


# ------------------------------------------------------------------
# charla locales
# ------------------------------------------------------------------

@main.command()
def locales():
    """Lista los idiomas a los que se puede traducir."""
    for locale in SUPPORTED_LOCALES:
        click.echo(f"{locale.code:<6} {locale.native_name:<20} ({locale.language})")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _build(ctx: click.Context, with_models: bool) -> App:
    try:
        return build_app(config_path=ctx.obj["config_path"], with_models=with_models)
    except (FileNotFoundError, RuntimeError, ValueError) as e:
        _abort(str(e))


def _validate_audio(file_url: str) -> None:
    """Las URIs remotas se aceptan tal cual; las rutas locales deben existir."""
    if file_url.startswith(("gs://", "http://", "https://")):
        return

    p = Path(file_url).expanduser()
    if not p.exists():
        _abort(f"Archivo no encontrado: {file_url}")
    if not p.is_file():
        _abort(f"La ruta no es un archivo: {file_url}")


def _abort(message: str) -> None:
    """Error de validación, culpa del usuario."""
    click.echo(click.style(f"[charla] Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _error(message: str) -> None:
    """Error de sistema, no es culpa del usuario."""
    click.echo(click.style(f"[charla] {message}", fg="red"), err=True)
