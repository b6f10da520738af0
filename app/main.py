import logging
import os
import uuid
from threading import Lock
from typing import Dict, Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from app.config import get_settings
from app.models import StartRequest, AnswerRequest, DocRequest, SeedInput, SeedKind, InterviewRound
from doc.generator import write_document
from interview.decision_state import DecisionState
from interview.engine import InterviewEngine, create_engine
from interview.errors import (
    IncompleteStateError,
    InvalidAnswerError,
    RoundLimitExceededError,
    UnresolvableSeedError,
)

load_dotenv()

logging.basicConfig(
    level=getattr(logging, get_settings().log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Spec Interview", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins, allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"], allow_headers=["Content-Type"]
)

# In-Memory Storage: session_id -> {"state": DecisionState, "round": InterviewRound | None, "lock": Lock}
SESSIONS: Dict[str, Dict[str, Any]] = {}
_sessions_lock = Lock()

_engine: Optional[InterviewEngine] = None


def get_engine() -> InterviewEngine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def resolve_in_workspace(path: str) -> str:
    """
    Löst einen vom Client gesendeten Pfad unterhalb von workspace_root auf.

    Raises:
        HTTPException 400: wenn der Pfad außerhalb des Arbeitsverzeichnisses liegt
    """
    root = os.path.realpath(get_settings().workspace_root)
    resolved = os.path.realpath(os.path.join(root, os.path.expanduser(path)))
    if os.path.commonpath([root, resolved]) != root:
        logger.warning(f"🚫 Pfad außerhalb des Arbeitsverzeichnisses abgelehnt: {path}")
        raise HTTPException(status_code=400, detail=f"Pfad außerhalb des Arbeitsverzeichnisses: {path}")
    return resolved


def _get_session(session_id: str) -> Dict[str, Any]:
    with _sessions_lock:
        session = SESSIONS.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session nicht gefunden")
    return session


def _advance(session: Dict[str, Any]) -> Optional[InterviewRound]:
    """Bestimmt die nächste Runde; beendet die Session beim Rundenlimit."""
    try:
        session["round"] = get_engine().next_round(session["state"])
    except RoundLimitExceededError as e:
        session["round"] = None
        session["abandoned"] = str(e)
    return session["round"]


def _state_summary(session: Dict[str, Any]) -> Dict[str, Any]:
    state: DecisionState = session["state"]
    progress = get_engine().get_progress(state)
    return {
        "round": state.round_number,
        "done": session["round"] is None and "abandoned" not in session,
        "abandoned": session.get("abandoned"),
        "progress_percent": progress["progress_percent"],
        "missing": progress["missing_required"],
        "classification": state.classification,
    }


@app.post("/start")
def start(req: StartRequest):
    engine = get_engine()
    payload = resolve_in_workspace(req.payload) if req.kind == SeedKind.REFERENCE else req.payload
    target_root = resolve_in_workspace(req.target_root) if req.target_root else None
    try:
        state = engine.begin_session(SeedInput(kind=req.kind, payload=payload), target_root=target_root)
    except UnresolvableSeedError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session_id = str(uuid.uuid4())
    session: Dict[str, Any] = {"state": state, "round": None, "lock": Lock()}
    _advance(session)
    with _sessions_lock:
        SESSIONS[session_id] = session

    logger.info(f"📋 Session erstellt: {session_id}")
    return {
        "session_id": session_id,
        "next_round": session["round"],
        "state": _state_summary(session)
    }


@app.post("/answer")
def answer(req: AnswerRequest):
    session = _get_session(req.session_id)
    with session["lock"]:
        if session.get("abandoned"):
            raise HTTPException(status_code=409, detail=session["abandoned"])
        if session["round"] is None:
            raise HTTPException(status_code=409, detail="Keine offenen Fragen mehr")

        try:
            session["state"] = get_engine().apply_answers(session["state"], req.answers, session["round"])
        except InvalidAnswerError as e:
            raise HTTPException(status_code=400, detail=str(e))

        _advance(session)
        return {
            "next_round": session["round"],
            "state": _state_summary(session)
        }


@app.get("/status/{session_id}")
def status(session_id: str):
    session = _get_session(session_id)
    with session["lock"]:
        state: DecisionState = session["state"]
        return {
            "session_id": session_id,
            "facts": {fid: fact.model_dump(mode="json") for fid, fact in state.facts.items()},
            "current_round": session["round"],
            "state": _state_summary(session)
        }


@app.post("/document")
def build_document(req: DocRequest):
    session = _get_session(req.session_id)
    with session["lock"]:
        try:
            rendered = get_engine().render(session["state"])
        except IncompleteStateError as e:
            raise HTTPException(status_code=409, detail={"message": str(e), "missing": e.missing})

    path = None
    if req.write:
        if not rendered.target_path:
            raise HTTPException(status_code=409, detail="Kein Zielpfad für das Dokument angegeben")
        path = write_document(rendered, path=resolve_in_workspace(rendered.target_path))
    return {
        "document": rendered.text,
        "sections": rendered.sections,
        "target_path": rendered.target_path,
        "written_to": path
    }


@app.delete("/session/{session_id}")
def delete_session(session_id: str):
    with _sessions_lock:
        session = SESSIONS.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail="Session nicht gefunden")
    return {"deleted": session_id}
