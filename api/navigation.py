"""
API endpoints for session navigation state
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from navigation.state import NavigationPath, SessionRegistry, TreeNode

from .dependencies import get_sessions

router = APIRouter()


class ReferenceRequest(BaseModel):
    reference: Optional[str] = None


class CommentaryToggleRequest(BaseModel):
    reference: Optional[str] = None  # base reference
    section: int = 0
    target: Optional[str] = None  # commentary reference


class SessionResponse(BaseModel):
    state: NavigationPath
    current: Optional[str] = None
    tree: List[TreeNode] = []


def _response(state: NavigationPath) -> SessionResponse:
    return SessionResponse(state=state, current=state.current, tree=state.tree())


def _require_reference(reference: Optional[str]) -> str:
    if not reference or not reference.strip():
        raise HTTPException(status_code=400, detail="Missing reference")
    return reference.strip()


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    return _response(sessions.get(session_id))


@router.post("/sessions/{session_id}/path", response_model=SessionResponse)
def add_to_path(
    session_id: str, request: ReferenceRequest, sessions: SessionRegistry = Depends(get_sessions)
):
    """Navigate to a reference"""
    state = sessions.get(session_id)
    state.append(_require_reference(request.reference))
    return _response(state)


@router.post("/sessions/{session_id}/back", response_model=SessionResponse)
def go_back(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    state = sessions.get(session_id)
    state.truncate_to_parent()
    return _response(state)


@router.post("/sessions/{session_id}/home", response_model=SessionResponse)
def go_home(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    state = sessions.get(session_id)
    state.clear()
    return _response(state)


@router.post("/sessions/{session_id}/toggle", response_model=SessionResponse)
def toggle_node(
    session_id: str, request: ReferenceRequest, sessions: SessionRegistry = Depends(get_sessions)
):
    """Expand / collapse a node of the navigation tree"""
    state = sessions.get(session_id)
    state.toggle_expanded(_require_reference(request.reference))
    return _response(state)


@router.post("/sessions/{session_id}/commentary", response_model=SessionResponse)
def toggle_commentary(
    session_id: str,
    request: CommentaryToggleRequest,
    sessions: SessionRegistry = Depends(get_sessions),
):
    """Open a commentary under a section (closing the one open there), or close it"""
    if request.section < 0:
        raise HTTPException(status_code=400, detail="section must be >= 0")
    state = sessions.get(session_id)
    state.toggle_commentary(
        _require_reference(request.reference), request.section, _require_reference(request.target)
    )
    return _response(state)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sessions.drop(session_id)
    return {"message": f"Session '{session_id}' deleted"}


@router.put("/sessions/{session_id}", response_model=SessionResponse)
def restore_session(
    session_id: str, state: NavigationPath, sessions: SessionRegistry = Depends(get_sessions)
):
    """Replace a session with previously saved state"""
    state.session_id = session_id
    return _response(sessions.restore(state.to_json()))
