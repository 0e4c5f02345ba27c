"""
Command Session - Per-user command state for interactive surfaces.

A CommandSession wraps one CVCommandService for one signed-in user and
tracks what a chat UI needs to show: whether a command is in flight, the
last result, and the current API0 conversation.

Sessions are kept in memory with a TTL. After inactivity the session (and
with it the API0 conversation id) is dropped; the next command starts a
fresh conversation.

Example flow:
1. User: "Generate CV for john-doe" → API0 asks "Which language?"
2. User: "French" → same session, same conversation id → PDF generated
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.environments.api0 import FileAttachment
from app.schemas.user import SignedInUser
from app.services.cv_command_service import (
    CommandResult,
    CVCommandService,
    get_command_service,
)

logger = logging.getLogger("cvenom.command_session")


COMMAND_SUGGESTIONS = [
    "Generate CV for john-doe in English",
    "Create person profile for jane-smith",
    "Get CV templates",
    "Edit experience section for john-doe",
    "Show my user profile",
    "Generate PDF for john-doe using keyteo template",
    "Show file tree",
    "Get file content for john-doe/cv_params.toml",
]


def get_command_suggestions(text: str) -> List[str]:
    """
    Example commands matching what the user typed so far.

    Args:
        text: Current input (may be blank)

    Returns:
        First four suggestions for blank input, otherwise every suggestion
        containing the input (case-insensitive)
    """
    if not text.strip():
        return COMMAND_SUGGESTIONS[:4]
    needle = text.lower()
    return [s for s in COMMAND_SUGGESTIONS if needle in s.lower()]


@dataclass
class CommandSessionState:
    """What a chat surface renders besides the messages themselves."""
    is_analyzing: bool = False
    is_executing: bool = False
    last_result: Optional[CommandResult] = None
    conversation_id: Optional[str] = None
    conversation_started: bool = False
    last_activity: float = field(default_factory=time.time)

    @property
    def is_loading(self) -> bool:
        return self.is_analyzing or self.is_executing

    def to_dict(self) -> Dict:
        return {
            "is_analyzing": self.is_analyzing,
            "is_executing": self.is_executing,
            "is_loading": self.is_loading,
            "conversation_id": self.conversation_id,
            "conversation_started": self.conversation_started,
            "last_success": self.last_result.success if self.last_result else None,
        }


class CommandSession:
    """
    One user's command session.

    Commands run one at a time: a second execute_command waits until the
    first has finished, so the underlying client never sees two in-flight
    analyze calls.
    """

    def __init__(self, service: CVCommandService):
        self.service = service
        self.state = CommandSessionState()
        self._lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self.service.is_authenticated

    async def execute_command(
        self,
        sentence: str,
        attachments: Sequence[FileAttachment] = (),
    ) -> CommandResult:
        """
        Run one command and update the session state.

        Returns:
            The CommandResult from the command service (never raises)
        """
        async with self._lock:
            self.state.last_activity = time.time()
            self.state.is_analyzing = True
            self.state.is_executing = False
            self.state.last_result = None

            try:
                if self.is_authenticated and not self.state.conversation_started:
                    try:
                        conversation_id = await self.service.start_conversation()
                        self.state.conversation_id = conversation_id
                        self.state.conversation_started = True
                    except Exception as e:
                        # analyze_sentence starts one lazily
                        logger.warning(f"Could not start conversation up front: {e}")

                self.state.is_executing = True
                result = await self.service.process_and_execute(sentence, attachments)

                conversation_id = result.conversation_id or self.service.get_conversation_id()
                if conversation_id:
                    self.state.conversation_id = conversation_id
                    self.state.conversation_started = True

                self.state.last_result = result
                return result
            finally:
                self.state.is_analyzing = False
                self.state.is_executing = False
                self.state.last_activity = time.time()

    def reset_conversation(self) -> None:
        """Forget the conversation. An in-flight command is not cancelled."""
        self.service.reset_conversation()
        self.state.conversation_id = None
        self.state.conversation_started = False
        self.state.last_result = None
        logger.info("Command session conversation reset")


class CommandSessionManager:
    """
    In-memory registry of command sessions, one per user.

    Sessions expire after `ttl_seconds` without activity.
    """

    def __init__(
        self,
        ttl_seconds: int = 1800,
        service_factory: Callable[[Optional[SignedInUser]], CVCommandService] = get_command_service,
    ):
        """
        Args:
            ttl_seconds: Idle time before a session is dropped
            service_factory: Builds the command service of a new session
        """
        self._sessions: Dict[str, CommandSession] = {}
        self._ttl = ttl_seconds
        self._service_factory = service_factory
        logger.info(f"Command session manager initialized (TTL: {ttl_seconds}s)")

    def _is_expired(self, session: CommandSession, now: float) -> bool:
        # A running command keeps its session alive
        if session.state.is_loading:
            return False
        return now - session.state.last_activity > self._ttl

    def get_session(self, user: SignedInUser) -> CommandSession:
        """
        Get (or create) the session of a user.

        The user's latest token replaces the stored one on every call.

        Raises:
            IntentServiceError: If a new session is needed and API0 is not configured
        """
        self.cleanup_expired()

        now = time.time()
        session = self._sessions.get(user.uid)
        if session is not None and self._is_expired(session, now):
            logger.debug(f"Command session expired for user {user.uid[:8]}...")
            session = None

        if session is None:
            session = CommandSession(self._service_factory(user))
            self._sessions[user.uid] = session
        else:
            session.service.set_user(user)

        session.state.last_activity = now
        return session

    def peek(self, user_id: str) -> Optional[CommandSession]:
        """Existing, unexpired session of a user; never creates one."""
        session = self._sessions.get(user_id)
        if session is None or self._is_expired(session, time.time()):
            return None
        return session

    def reset(self, user_id: str) -> None:
        """Reset the conversation of a user's session, if any."""
        session = self._sessions.get(user_id)
        if session is not None:
            session.reset_conversation()

    def cleanup_expired(self) -> int:
        """
        Drop expired sessions.

        Returns:
            Number of sessions removed
        """
        now = time.time()
        expired = [uid for uid, s in self._sessions.items() if self._is_expired(s, now)]
        for uid in expired:
            del self._sessions[uid]
        if expired:
            logger.info(f"Removed {len(expired)} expired command session(s)")
        return len(expired)

    def clear_all(self) -> None:
        """Drop every session (for testing/reset)."""
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
command_session_manager = CommandSessionManager(ttl_seconds=settings.COMMAND_SESSION_TTL_SECONDS)
