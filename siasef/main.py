"""Main Quart application for the Si Asef safety assistant."""
import asyncio
import logging
from typing import Optional, Tuple

from hypercorn.asyncio import serve as hypercorn_serve
from hypercorn.config import Config as HypercornConfig
from pydantic import ValidationError
from quart import Quart, jsonify, make_response, request
import structlog

from siasef import config
from siasef.db import PassageStore
from siasef.errors import (
    DocumentNotFoundError,
    EmptyExtractionError,
    ProviderUnavailableError,
    UnsupportedFileTypeError,
)
from siasef.llm_client import LLMProvider, create_provider
from siasef.memory import InMemorySessionStore, SessionStore, get_or_create_session
from siasef.models import ChatRequest, DocumentIntake
from siasef.rag.citations import unresolved_citations
from siasef.rag.embedder import Embedder
from siasef.rag.ingest import IngestPipeline
from siasef.rag.ranker import Ranker, create_ranker
from siasef.rag.retriever import Retriever
from siasef.streaming import encode_events, prime_stream, sse_events

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

TEXT_FILE_TYPES = {"text/plain"}


def _validation_details(error: ValidationError) -> list:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in error.errors()
    ]


def _decode_upload(file_name: str, mimetype: str, raw: bytes) -> Tuple[str, str]:
    """Return (text, file_type) for an uploaded file.

    Only plain text is accepted; binary formats need an external extractor.
    """
    file_type = mimetype or "application/octet-stream"
    if file_type not in TEXT_FILE_TYPES and not file_name.lower().endswith(".txt"):
        raise UnsupportedFileTypeError(f"Unsupported file type: {file_type}")

    try:
        return raw.decode("utf-8-sig"), "text/plain"
    except UnicodeDecodeError as e:
        raise UnsupportedFileTypeError("Text file is not valid UTF-8") from e


def create_app(
    store: Optional[PassageStore] = None,
    provider: Optional[LLMProvider] = None,
    sessions: Optional[SessionStore] = None,
    ranker: Optional[Ranker] = None,
) -> Quart:
    """Build the application and wire its collaborators.

    Args:
        store: Passage store (default: SQLite at config.DB_PATH)
        provider: LLM provider (default: selected by config.LLM_PROVIDER)
        sessions: Session table (default: in-memory)
        ranker: Similarity ranker (default: selected by config.RANKER)
    """
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES

    store = store if store is not None else PassageStore()
    provider = provider if provider is not None else create_provider()
    sessions = sessions if sessions is not None else InMemorySessionStore()

    embedder = Embedder(provider)
    retriever = Retriever(store, embedder, ranker=ranker or create_ranker())
    pipeline = IngestPipeline(store, embedder)

    @app.route("/api/documents/upload", methods=["POST"])
    async def upload_document():
        """Ingest an uploaded text file or a JSON body of extracted text.

        Multipart form field ``file`` (text/plain), or JSON:
        {
            "name": "Permenaker-5-2018.txt",
            "text": "extracted text, pages separated by form feeds",
            "pageNumber": 1  // optional, number of the first page
        }

        Returns JSON:
        {
            "success": true,
            "documentId": 1,
            "fileName": "Permenaker-5-2018.txt",
            "chunks": 12,
            "pages": 3
        }
        """
        try:
            if request.is_json:
                data = await request.get_json(silent=True)
                intake = DocumentIntake.model_validate(data or {})
            else:
                files = await request.files
                upload = files.get("file")
                if upload is None or not upload.filename:
                    return jsonify({"error": "No file uploaded"}), 400

                text, file_type = _decode_upload(
                    upload.filename, upload.mimetype, upload.read()
                )
                intake = DocumentIntake(name=upload.filename, text=text, file_type=file_type)

            logger.info(
                "document_upload_received",
                file_name=intake.name,
                text_length=len(intake.text),
            )

            result = await pipeline.ingest_document(
                intake.name,
                intake.text,
                file_type=intake.file_type,
                first_page=intake.page_number,
            )

        except ValidationError as e:
            return jsonify({"error": "Invalid request body", "details": _validation_details(e)}), 400
        except (UnsupportedFileTypeError, EmptyExtractionError) as e:
            logger.warning("document_upload_rejected", error=str(e), error_type=type(e).__name__)
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.error("document_upload_error", error=str(e), error_type=type(e).__name__)
            return jsonify({"error": "Failed to process document"}), 500

        # New context: every conversation must start over
        sessions.invalidate_all()

        return jsonify({
            "success": True,
            "documentId": result.document_id,
            "fileName": intake.name,
            "chunks": result.chunk_count,
            "pages": result.page_count,
        })

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        """List ingested documents, most recent first."""
        try:
            documents = store.list_documents()
            return jsonify({"documents": [d.to_dict() for d in documents]})

        except Exception as e:
            logger.error("documents_list_error", error=str(e))
            return jsonify({"error": "Failed to list documents"}), 500

    @app.route("/api/documents/<int:document_id>", methods=["DELETE"])
    async def delete_document(document_id: int):
        """Delete a document and all of its passages.

        Returns:
            200 with {"success": true} if deleted
            404 Not Found if the document doesn't exist
        """
        try:
            if not store.delete_document(document_id):
                raise DocumentNotFoundError(f"Document {document_id} not found")

        except DocumentNotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except Exception as e:
            logger.error("document_delete_error", error=str(e), document_id=document_id)
            return jsonify({"error": "Failed to delete document"}), 500

        sessions.invalidate_all()
        return jsonify({"success": True})

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a question as a stream of server-sent events.

        Expects JSON body:
        {
            "message": "Apa kewajiban pengusaha menurut PP 50/2012?",
            "sessionId": "client-issued-session-id"
        }

        Streams ``data: {"sources": [...]}``, then ``data: {"text": "..."}``
        deltas, then ``data: [DONE]``.
        """
        data = await request.get_json(silent=True)

        try:
            chat_request = ChatRequest.model_validate(data or {})
        except ValidationError as e:
            logger.error("invalid_chat_request", details=_validation_details(e))
            return jsonify({"error": "Invalid request body", "details": _validation_details(e)}), 400

        if not provider.is_configured:
            logger.error("provider_not_configured", provider=provider.name)
            return jsonify({"error": f"LLM provider '{provider.name}' is not configured"}), 500

        session_id = chat_request.session_id
        logger.info(
            "chat_request_received",
            session_id=session_id,
            message_length=len(chat_request.message),
            user_message_preview=chat_request.message[:100],
        )

        session = get_or_create_session(sessions, session_id, provider)

        try:
            composed = await retriever.compose_prompt(chat_request.message)

            def on_complete(answer: str) -> None:
                unresolved = unresolved_citations(answer, composed.sources)
                if unresolved:
                    logger.warning(
                        "unresolved_citations",
                        session_id=session_id,
                        source_ids=unresolved,
                        source_count=len(composed.sources),
                    )
                logger.info(
                    "chat_response_sent",
                    session_id=session_id,
                    response_length=len(answer),
                    sources=len(composed.sources),
                    confident=composed.confident,
                )

            deltas = await prime_stream(session.stream_reply(composed.prompt, on_complete))

        except ProviderUnavailableError as e:
            logger.error("chat_provider_failed", session_id=session_id, error=str(e))
            return jsonify({"error": f"LLM provider failed: {e}"}), 502
        except Exception as e:
            logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
            return jsonify({
                "error": "An error occurred processing your request. Please try again."
            }), 500

        response = await make_response(
            encode_events(sse_events(composed.sources, deltas)),
            {
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )
        response.timeout = None
        return response

    @app.route("/api/chat/reset", methods=["POST"])
    async def reset_chat():
        """Drop a session so its next message starts a fresh conversation."""
        data = await request.get_json(silent=True) or {}
        session_id = data.get("sessionId")

        if not session_id:
            return jsonify({"error": "Missing 'sessionId' in request body"}), 400

        invalidated = sessions.invalidate(session_id)
        return jsonify({"success": True, "invalidated": invalidated})

    @app.route("/api/health")
    async def health():
        """Report provider configuration and corpus size."""
        try:
            passages = store.count_passages()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return jsonify({"status": "unhealthy", "error": str(e)}), 503

        return jsonify({
            "status": "ok",
            "provider": provider.name,
            "hasApiKey": provider.is_configured,
            "passages": passages,
            "sessions": len(sessions),
        })

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    async def too_large(error):
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(500)
    async def internal_error(error):
        """Handle 500 errors."""
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


def serve() -> None:
    """Run the application under Hypercorn.

    Equivalent to ``hypercorn "siasef.main:create_app()"``.
    """
    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [f"{config.HOST}:{config.PORT}"]
    logger.info("server_starting", host=config.HOST, port=config.PORT, provider=config.LLM_PROVIDER)
    asyncio.run(hypercorn_serve(create_app(), hypercorn_config))


if __name__ == "__main__":
    serve()
