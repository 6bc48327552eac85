"""HTTP entry point for prompt assembly and generation."""

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .core.config import configure_logging, settings
from .core.domain import PromptSettings, PromptSource
from .prompting import (
    IdentifierNotFound,
    PreparedChat,
    PromptAssemblyError,
    TokenBudgetExceeded,
    prepare_chat_messages,
)
from .providers import ChatProvider, ChatProviderFactory, ProviderError, StreamingReply

logger = logging.getLogger(__name__)


class AssembleRequest(BaseModel):
    source: PromptSource
    settings: PromptSettings = Field(default_factory=PromptSettings)


class AssembleResponse(BaseModel):
    chat: list[dict[str, Any]]
    token_budget: int
    token_breakdown: dict[str, int]
    overridden_prompts: list[str]

    @classmethod
    def from_prepared(cls, prepared: PreparedChat) -> "AssembleResponse":
        return cls(
            chat=prepared.chat,
            token_budget=prepared.token_budget,
            token_breakdown=prepared.token_breakdown,
            overridden_prompts=prepared.overridden_prompts,
        )


class GenerateRequest(AssembleRequest):
    stream: bool = False
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Sampling parameters passed through to the vendor",
    )


class GenerateResponse(BaseModel):
    reply: str
    request_id: str
    prompt: AssembleResponse


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    logger.info(f"Starting chatforge {__version__}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Default source: {settings.default_source}, tokenizer: {settings.tokenizer_model}")

    yield

    logger.info("Shutting down chatforge")


app = FastAPI(
    title="chatforge",
    description="Prompt assembly and token budgeting for chat completion vendors",
    version=__version__,
    debug=settings.debug,
    lifespan=lifespan,
)

if settings.is_development():
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


async def assemble(request: AssembleRequest, request_id: str) -> PreparedChat:
    """Run the pipeline, mapping assembly failures to HTTP errors."""
    try:
        return await prepare_chat_messages(request.source, request.settings)
    except TokenBudgetExceeded as e:
        logger.warning(f"[REQ-{request_id}] Mandatory prompts do not fit: {e.identifier}")
        raise HTTPException(
            status_code=400,
            detail=f"Mandatory prompts exceed the context size ({e.identifier}). "
                   "Increase the context size or shorten the prompts.",
        ) from e
    except IdentifierNotFound as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except PromptAssemblyError as e:
        logger.error(f"[REQ-{request_id}] Prompt assembly failed: {e}")
        raise HTTPException(status_code=422, detail=str(e)) from e


def create_provider(request: GenerateRequest) -> ChatProvider:
    try:
        return ChatProviderFactory.create_provider(request.settings.chat_completion_source)
    except ProviderError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint for health checks."""
    return {
        "message": "chatforge",
        "status": "operational",
        "version": __version__,
        "environment": settings.environment,
    }


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
        "debug": settings.debug,
        "version": __version__,
    }


@app.post("/api/prompt/assemble", response_model=AssembleResponse)
async def assemble_prompt(request: AssembleRequest) -> AssembleResponse:
    """Assemble a prompt without contacting any vendor."""
    request_id = str(uuid.uuid4())[:8]
    logger.info(f"[REQ-{request_id}] Assembling prompt for {request.source.character.name}")

    prepared = await assemble(request, request_id)
    return AssembleResponse.from_prepared(prepared)


@app.post("/api/chat/generate", response_model=None)
async def generate(request: GenerateRequest, http_request: Request) -> GenerateResponse | StreamingResponse:
    """Assemble a prompt and send it to the configured vendor."""
    request_id = str(uuid.uuid4())[:8]
    source = request.settings.chat_completion_source
    logger.info(f"[REQ-{request_id}] Generating with {source.value} model={request.settings.model}")

    prepared = await assemble(request, request_id)
    provider = create_provider(request)
    options = {
        "model": request.settings.model,
        "max_tokens": request.settings.openai_max_tokens,
        **request.params,
    }

    if request.stream:
        async def stream_reply() -> AsyncIterator[str]:
            abort_event = asyncio.Event()
            reply = StreamingReply()
            async with provider:
                async for chunk in reply.iterate(provider.stream(prepared.chat, **options), abort_event):
                    yield chunk
                    if await http_request.is_disconnected():
                        abort_event.set()
            logger.info(
                f"[REQ-{request_id}] Stream finished: {len(reply.text)} chars, aborted={reply.aborted}"
            )

        return StreamingResponse(stream_reply(), media_type="text/plain")

    try:
        async with provider:
            text = await provider.generate(prepared.chat, **options)
    except ProviderError as e:
        logger.error(f"[REQ-{request_id}] Vendor request failed: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e

    logger.info(f"[REQ-{request_id}] Reply received - length: {len(text)}")
    return GenerateResponse(
        reply=text,
        request_id=request_id,
        prompt=AssembleResponse.from_prepared(prepared),
    )


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "chatforge.main:app",
        host=settings.fastapi_host,
        port=settings.fastapi_port,
        reload=settings.is_development(),
    )


if __name__ == "__main__":
    run()
