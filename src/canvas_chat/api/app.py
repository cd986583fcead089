"""
FastAPI Application Module

HTTP surface for multi-conversation chat with text replies and image
generation. Every endpoint acts on behalf of the caller named in the
``X-User-Id`` header, which the upstream authentication layer sets.

Key Features:
- Owner-scoped conversations and messages
- Gemini text replies with a history-free fallback, Pollinations images
- Rate limiting and optional per-conversation serialization of sends
- Structured logging, Prometheus metrics and OpenTelemetry tracing

Run with ``uvicorn canvas_chat.api.app:create_app --factory``.
"""

from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import generate_latest
from pydantic import BaseModel, Field
from structlog import get_logger

from ..config import Settings
from ..domain.errors import NotAuthorized, StoreWriteFailure, Unauthenticated
from ..domain.models import Conversation, Message
from ..metrics import CUSTOM_REGISTRY, ERRORS, REQUESTS
from ..repositories.base import Repository
from ..repositories.memory import InMemoryRepository
from ..services.chat import ChatService
from ..services.image import ImageProvider, PollinationsImageProvider
from ..services.llm import GeminiTextProvider, TextProvider
from .auth import get_caller_id
from .rate_limiter import RateLimiter, RateLimitExceeded, rate_limit_middleware
from .request_queue import ExchangeQueue

logger = get_logger()


class ConversationCreate(BaseModel):
    """Defines the structure for conversation creation requests"""
    title: Optional[str] = None


class MessageCreate(BaseModel):
    """Defines the structure for message creation requests"""
    content: str = Field(min_length=1)
    is_image_request: bool = False


class DeleteResult(BaseModel):
    success: bool


def get_chat_service(request: Request) -> ChatService:
    """Returns the chat service"""
    return request.app.state.chat_service


def get_exchange_queue(request: Request) -> Optional[ExchangeQueue]:
    """Returns the exchange queue, or None when sends are not serialized"""
    return request.app.state.exchange_queue


def _unauthenticated() -> HTTPException:
    return HTTPException(status_code=401, detail="Authentication required")


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Conversation not found")


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
    text_provider: Optional[TextProvider] = None,
    image_provider: Optional[ImageProvider] = None,
) -> FastAPI:
    """Builds the application. Settings are read from the environment when not given."""
    settings = settings or Settings.from_env()
    repository = repository or InMemoryRepository()
    text_provider = text_provider or GeminiTextProvider(settings)
    image_provider = image_provider or PollinationsImageProvider(settings)

    chat_service = ChatService(
        repository,
        text_provider,
        image_provider,
        context_window=settings.context_window,
    )
    rate_limiter = RateLimiter(rate_limit=settings.rate_limit, time_window=settings.rate_window)
    exchange_queue = ExchangeQueue(settings.max_concurrent_exchanges) if settings.serialize_exchanges else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        await rate_limiter.start()
        logger.info("application_startup_complete", services=settings.available_services())

        yield

        await rate_limiter.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Canvas Chat API",
        description="Multi-conversation chat with text replies and image generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.chat_service = chat_service
    app.state.rate_limiter = rate_limiter
    app.state.exchange_queue = exchange_queue

    # Enable cross-origin requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests and enforces rate limits"""
        logger.info("request_started", path=request.url.path, method=request.method)
        try:
            await rate_limit_middleware(request, rate_limiter)
        except RateLimitExceeded as e:
            return JSONResponse(
                status_code=429,
                content={"detail": str(e)},
                headers={"Retry-After": str(e.retry_after)},
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise

        route = request.scope.get("route")
        path = getattr(route, "path", "unmatched")
        REQUESTS.labels(path=path).inc()
        if response.status_code >= 500:
            ERRORS.labels(path=path).inc()
        return response

    @app.get("/conversations", response_model=List[Conversation])
    async def list_conversations(
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
    ) -> List[Conversation]:
        """Lists the caller's conversations, most recently active first"""
        try:
            return await service.list_conversations(user_id, limit=limit, offset=offset)
        except Unauthenticated:
            raise _unauthenticated()
        except Exception as e:
            logger.error("list_conversations_error", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to list conversations")

    @app.post("/conversations", response_model=Conversation)
    async def create_conversation(
        body: Optional[ConversationCreate] = None,
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
    ) -> Conversation:
        """Starts a new conversation thread"""
        try:
            return await service.create_conversation(user_id, title=body.title if body else None)
        except Unauthenticated:
            raise _unauthenticated()
        except Exception as e:
            logger.error("create_conversation_error", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to create conversation")

    @app.delete("/conversations/{conversation_id}", response_model=DeleteResult)
    async def delete_conversation(
        conversation_id: UUID,
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
    ) -> DeleteResult:
        """Deletes an owned conversation together with its messages"""
        try:
            deleted = await service.delete_conversation(user_id, conversation_id)
        except Unauthenticated:
            raise _unauthenticated()
        except Exception as e:
            logger.error("delete_conversation_error", conversation_id=str(conversation_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to delete conversation")
        if not deleted:
            raise _not_found()
        return DeleteResult(success=True)

    @app.get("/conversations/{conversation_id}/messages", response_model=List[Message])
    async def get_messages(
        conversation_id: UUID,
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
    ) -> List[Message]:
        """Gets the message history of a conversation, oldest first"""
        try:
            return await service.get_messages(user_id, conversation_id, limit=limit, offset=offset)
        except Unauthenticated:
            raise _unauthenticated()
        except NotAuthorized:
            raise _not_found()
        except Exception as e:
            logger.error("get_messages_error", conversation_id=str(conversation_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to get messages")

    @app.post("/conversations/{conversation_id}/messages", response_model=Message)
    async def send_message(
        conversation_id: UUID,
        message: MessageCreate,
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
        queue: Optional[ExchangeQueue] = Depends(get_exchange_queue),
    ) -> Message:
        """
        Stores the user's message and returns the assistant's reply.
        Provider failures come back as an apology reply, not an error.
        """
        try:
            args = (user_id, conversation_id, message.content, message.is_image_request)
            if queue is None:
                return await service.send_message(*args)
            return await queue.run(conversation_id, service.send_message, *args)
        except Unauthenticated:
            raise _unauthenticated()
        except NotAuthorized:
            raise _not_found()
        except StoreWriteFailure as e:
            logger.error("send_message_store_error", conversation_id=str(conversation_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to save message")
        except Exception as e:
            logger.error("send_message_error", conversation_id=str(conversation_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to process message")

    @app.get("/messages/{message_id}", response_model=Message)
    async def get_message(
        message_id: UUID,
        user_id: Optional[str] = Depends(get_caller_id),
        service: ChatService = Depends(get_chat_service),
    ) -> Message:
        """Retrieves a single message from one of the caller's conversations"""
        try:
            return await service.get_message(user_id, message_id)
        except Unauthenticated:
            raise _unauthenticated()
        except NotAuthorized:
            raise HTTPException(status_code=404, detail="Message not found")

    @app.get("/health")
    async def health():
        """Reports which generation services are configured"""
        return {"status": "ok", "services": settings.available_services()}

    @app.get("/metrics")
    async def metrics():
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")

    return app
