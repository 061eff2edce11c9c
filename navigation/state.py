"""
Navigation state of one study session

The path is the ordered list of references the user opened, each one reached
from the previous. It only grows, except for going back one step or home.
Expanded nodes are the references whose subtree is open in the navigation
tree. Persisting a session is an explicit to_json / from_json round trip.
"""

import json
import threading
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel

from commentary.graph import toggle_section


class TreeNode(BaseModel):
    ref: str
    title: str
    depth: int
    is_active: bool
    is_expanded: bool


class NavigationPath(BaseModel):
    """Visited references and expanded tree nodes"""

    session_id: str = ""
    path: List[str] = []
    expanded: List[str] = []
    # base reference -> section index -> the commentary open under that section
    open_commentary: Dict[str, Dict[int, str]] = {}

    def append(self, reference: str):
        self.path.append(reference)

    def truncate_to_parent(self) -> Optional[str]:
        """Drops the last reference (back); returns the new current one"""
        if self.path:
            self.path.pop()
        return self.current

    def clear(self):
        """Back to the start page; expanded nodes are kept"""
        self.path = []

    def toggle_expanded(self, reference: str) -> bool:
        """Returns True if the reference is expanded afterwards"""
        if reference in self.expanded:
            self.expanded.remove(reference)
            return False
        self.expanded.append(reference)
        return True

    def is_expanded(self, reference: str) -> bool:
        return reference in self.expanded

    def toggle_commentary(self, base_ref: str, section_index: int, target_ref: str) -> Optional[str]:
        """Opens or closes a commentary under a section of `base_ref` (one per section)"""
        sections = self.open_commentary.setdefault(base_ref, {})
        opened = toggle_section(sections, section_index, target_ref)
        if not sections:
            del self.open_commentary[base_ref]
        return opened

    @property
    def current(self) -> Optional[str]:
        return self.path[-1] if self.path else None

    @property
    def depth(self) -> int:
        return len(self.path)

    def tree(self) -> List[TreeNode]:
        """The path as a chain of tree nodes, root first"""
        last = len(self.path) - 1
        return [
            TreeNode(
                ref=ref,
                title=format_title(ref),
                depth=i,
                is_active=i == last,
                is_expanded=ref in self.expanded,
            )
            for i, ref in enumerate(self.path)
        ]

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "NavigationPath":
        return cls.model_validate(json.loads(data))


def format_title(ref: str) -> str:
    """Short title for the tree: the first two words of the reference"""
    parts = ref.split(" ")
    if len(parts) > 1:
        return f"{parts[0]} {parts[1]}"
    return ref


class SessionRegistry:
    """Process-local navigation state, one NavigationPath per session id"""

    def __init__(self):
        self._sessions: Dict[str, NavigationPath] = {}
        self._lock = threading.Lock()

    def get(self, session_id: Optional[str] = None) -> NavigationPath:
        """Existing session, or a new one (a fresh id when none is given)"""
        session_id = session_id or uuid.uuid4().hex
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = NavigationPath(session_id=session_id)
                self._sessions[session_id] = state
            return state

    def restore(self, data: str) -> NavigationPath:
        """Loads a serialized session, replacing any state with the same id"""
        state = NavigationPath.from_json(data)
        if not state.session_id:
            state.session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[state.session_id] = state
        return state

    def drop(self, session_id: str):
        with self._lock:
            self._sessions.pop(session_id, None)
