"""
HTTP API adapter for the inline image-generation engine.

Architectural role:
- Expose message processing and regeneration as HTTP endpoints.
- Translate engine outcomes and errors into JSON responses.
- Delegate all orchestration to `inline_imagegen.core.engine.GenerationEngine`.

Endpoint responsibilities:
- `POST /v1/messages/{message_id}/process`: generate pending instructions
  (`force_all` regenerates every attribute-grammar tag).
- `POST /v1/messages/{message_id}/regenerate`: explicit regenerate command.
- `GET /v1/messages/{message_id}/view`: current rendered view HTML.

Error handling strategy:
- Message already being processed -> HTTP 409.
- `ConfigurationError` -> HTTP 400 listing every problem.
- Unknown view -> HTTP 404.
- Other exceptions follow FastAPI default handling.
"""

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from inline_imagegen.api.runtime import build_engine
from inline_imagegen.core.engine import GenerationEngine, RunReport
from inline_imagegen.core.errors import ConfigurationError
from inline_imagegen.parsing.models import ParseMode

app = FastAPI()

_ENGINE: GenerationEngine | None = None


def set_engine(engine: GenerationEngine | None) -> None:
    """Override or clear the engine used by the endpoints."""
    global _ENGINE
    _ENGINE = engine


def get_engine() -> GenerationEngine:
    """Return the configured engine, building it from the environment once."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_engine()
    return _ENGINE


class ProcessRequest(BaseModel):
    force_all: bool = False


class RegenerateRequest(BaseModel):
    failed_only: bool = True


def _report_payload(message_id: str, report: RunReport | None) -> dict:
    if report is None:
        return {"message_id": message_id, "skipped": True, "jobs": []}

    return {
        "message_id": message_id,
        "skipped": False,
        "text": report.text,
        "jobs": [
            {
                "prompt": job.instruction.prompt,
                "grammar": job.instruction.kind.value,
                "state": job.state.value,
                "attempts": job.attempts,
                "resource": job.resource,
                "error": job.last_error,
            }
            for job in report.jobs
        ],
    }


def _busy(message_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": f"Message {message_id} is already being processed"},
    )


@app.post("/v1/messages/{message_id}/process")
async def process(message_id: str, request: ProcessRequest | None = None):
    engine = get_engine()
    if engine.guard.is_active(message_id):
        return _busy(message_id)

    mode = ParseMode.FORCE_ALL if request and request.force_all else ParseMode.NORMAL
    try:
        report = await engine.process_message(message_id, mode)
    except ConfigurationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc), "problems": exc.problems})

    return _report_payload(message_id, report)


@app.post("/v1/messages/{message_id}/regenerate")
async def regenerate(message_id: str, request: RegenerateRequest | None = None):
    engine = get_engine()
    if engine.guard.is_active(message_id):
        return _busy(message_id)

    failed_only = request.failed_only if request else True
    try:
        report = await engine.regenerate(message_id, failed_only=failed_only)
    except ConfigurationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc), "problems": exc.problems})

    return _report_payload(message_id, report)


@app.get("/v1/messages/{message_id}/view")
def view(message_id: str):
    rendered = get_engine().view(message_id)
    if rendered is None:
        return JSONResponse(status_code=404, content={"error": "No rendered view for message"})
    return {"message_id": message_id, "html": rendered.html()}
