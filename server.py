import asyncio
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from renovatr.base_utils import color_print, logger
from renovatr.conversation import ContentPart, EntityRef
from renovatr.db_helpers import create_session_factory
from renovatr.errors import (
    CycleCancelled,
    CycleInProgressError,
    EntityNotFound,
    ModelInvocationError,
    ModelOutputError,
    PersistenceError,
)
from renovatr.llm_client import LlmBackend
from renovatr.orchestrator import Orchestrator
from renovatr.persistence import SqlPersistenceStore
from renovatr.rate_limiter import FixedWindowRateLimiter

app = FastAPI(title="Renovatr chat backend")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.rate_limiter = FixedWindowRateLimiter()

RATE_LIMIT_EXEMPT_PATHS = {"/health"}


class PartIn(BaseModel):
    text: Optional[str] = None
    media_ref: Optional[str] = Field(None, alias="mediaRef")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.text is None) == (self.media_ref is None):
            raise ValueError("each part needs exactly one of text or media_ref")
        return self

    def to_part(self) -> ContentPart:
        return ContentPart(text=self.text, media_ref=self.media_ref)


class ChatRequest(BaseModel):
    parts: List[PartIn] = Field(..., min_length=1)
    client_turn_id: Optional[str] = None


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    if request.url.path in RATE_LIMIT_EXEMPT_PATHS:
        return await call_next(request)

    limiter = request.app.state.rate_limiter
    removed = limiter.maybe_sweep()
    if removed:
        logger.debug(f"Rate limiter sweep: removed {removed} expired windows")
    identifier = _client_identifier(request)
    if not limiter.check(identifier):
        color_print(f"Rate limit exceeded for {identifier}", color="bright_yellow", level=logging.WARNING)
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
            headers={"Retry-After": str(int(limiter.retry_after(identifier)) + 1)},
        )
    return await call_next(request)


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    store = SqlPersistenceStore(create_session_factory())
    return Orchestrator(store, LlmBackend())


async def _run(fn, *args, **kwargs):
    """Run a blocking orchestrator call in a worker thread and map domain errors to HTTP."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CycleInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CycleCancelled as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Persistence failure: {e}")
        raise HTTPException(status_code=500, detail="Could not save your changes. Please try again.")
    except (ModelInvocationError, ModelOutputError) as e:
        logger.warning(f"Model failure: {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail="Sorry, I couldn't get a response. Please try again.")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/tasks/{task_id}/chat")
async def task_chat(task_id: str, body: ChatRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = await _run(
        orchestrator.submit_user_turn,
        EntityRef.task(task_id),
        [p.to_part() for p in body.parts],
        client_turn_id=body.client_turn_id,
    )
    return result.to_dict()


@app.post("/projects/{project_id}/chat")
async def project_chat(project_id: str, body: ChatRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = await _run(
        orchestrator.submit_user_turn,
        EntityRef.project(project_id),
        [p.to_part() for p in body.parts],
        client_turn_id=body.client_turn_id,
    )
    return result.to_dict()


@app.post("/tasks/{task_id}/introduction")
async def task_introduction(task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    turn = await _run(orchestrator.introduce_task, EntityRef.task(task_id))
    return turn.to_dict()


@app.post("/projects/{project_id}/summary")
async def project_summary(project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    summary = await _run(orchestrator.summarize_project, EntityRef.project(project_id))
    return {"summary": summary}


@app.post("/projects/{project_id}/vision")
async def project_vision(project_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    vision = await _run(orchestrator.distill_vision_statement, EntityRef.project(project_id))
    return {"vision_statement": vision}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
