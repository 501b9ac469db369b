from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from functools import lru_cache
from typing import List
from config import settings
from agents.support_agent import SupportAgent
from models.chat import ChatMessage, ChatRequest, ChatSession, SessionCreate, SessionUpdate
from services.database import DatabaseService
from services.mention_search import MentionSearchResult, MentionSearchService
import logging

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Support AI Core",
    version="0.1.0",
    description="AI assistant backend for support agents: streaming chat, chat sessions and mention search"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    expose_headers=["X-User-Message-Id", "X-User-Message-Created-At"],
)


@lru_cache
def get_db() -> DatabaseService:
    return DatabaseService()


@lru_cache
def get_agent() -> SupportAgent:
    return SupportAgent(db=get_db())


def get_mention_search(db: DatabaseService = Depends(get_db)) -> MentionSearchService:
    return MentionSearchService(db)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "service": "Support AI Core"
    }


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting Support AI Core ({settings.ENVIRONMENT}, model {settings.AI_MODEL})")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Support AI Core")


# AI Chat

@app.post("/ai-chat")
def ai_chat(
    request: ChatRequest,
    db: DatabaseService = Depends(get_db),
    agent: SupportAgent = Depends(get_agent),
):
    """Send a message to the support agent and stream the reply

    The user message is persisted before the response starts, so a failure
    to store it surfaces as an error status rather than a broken stream.

    Args:
        request: {
            "message": str (storage form, may contain @type:id:name mentions),
            "sessionId": str,
            "supporterId": str,
            "metadata": {"mentions": {...}} (optional)
        }

    Returns:
        Chunked text/plain stream of reply tokens. Headers carry the
        persisted user message ID and timestamp.
    """
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    try:
        session = db.get_session(request.session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Chat session {request.session_id} not found")
        if session.supporter_id != request.supporter_id:
            raise HTTPException(status_code=403, detail="Chat session belongs to another supporter")

        user_message = agent.start_turn(request)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error storing chat message: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return StreamingResponse(
        agent.stream_reply(request, user_message_id=user_message.id),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-User-Message-Id": user_message.id,
            "X-User-Message-Created-At": user_message.created_at.isoformat(),
        },
    )


# Chat Sessions

@app.post("/sessions", response_model=ChatSession)
def create_session(body: SessionCreate, db: DatabaseService = Depends(get_db)):
    """Create a new chat session"""
    try:
        session = db.create_session(body.supporter_id, body.title)
        logger.info(f"Created chat session {session.id} for supporter {body.supporter_id}")
        return session
    except Exception as e:
        logger.error(f"Error creating chat session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/sessions", response_model=List[ChatSession])
def list_sessions(
    supporter_id: str,
    include_archived: bool = False,
    db: DatabaseService = Depends(get_db),
):
    """List a supporter's chat sessions, newest first"""
    try:
        return db.list_sessions(supporter_id, include_archived=include_archived)
    except Exception as e:
        logger.error(f"Error listing chat sessions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/sessions/{session_id}", response_model=ChatSession)
def update_session(session_id: str, body: SessionUpdate, db: DatabaseService = Depends(get_db)):
    """Rename a session or move it between active, archived and deleted"""
    if body.title is None and body.status is None:
        raise HTTPException(status_code=400, detail="Nothing to update")

    try:
        session = db.update_session(session_id, body.supporter_id, title=body.title, status=body.status)
    except Exception as e:
        logger.error(f"Error updating chat session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    if session is None:
        raise HTTPException(status_code=404, detail=f"Chat session {session_id} not found")
    return session


@app.get("/sessions/{session_id}/messages", response_model=List[ChatMessage])
def get_session_messages(session_id: str, db: DatabaseService = Depends(get_db)):
    """Get a session's messages in creation order"""
    try:
        session = db.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Chat session {session_id} not found")
        return db.get_session_messages(session_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading messages for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# Mentions

@app.get("/mentions/search", response_model=MentionSearchResult)
async def search_mentions(
    q: str = Query("", description="Text typed after '@'"),
    search: MentionSearchService = Depends(get_mention_search),
):
    """Search entities for the mention dropdown

    A failed lookup is reported in `error` with an empty result list, so it
    can be told apart from a search with no matches.
    """
    return await search.search(q)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
