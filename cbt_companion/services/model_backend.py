"""
Model Backend - generative model collaborator

ClaudeModelBackend runs each turn through its own ClaudeSDKClient, connected
and disconnected inside the calling task. The SDK session id returned by the
first ResultMessage is stored on the handle and passed as `resume` on later
turns, so the backend keeps the conversation state between turns.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ClaudeSDKError,
    CLIConnectionError,
    ResultMessage,
    TextBlock,
)

from ..models.errors import ModelBackendError, ModelErrorCode

logger = logging.getLogger(__name__)


@dataclass
class ModelSessionHandle:
    """
    Opaque handle to one model conversation

    Attributes:
        handle_id: Local handle id
        priming_text: Hidden context establishing the assistant's behaviour
        opening_reply: Scripted first assistant line
        sdk_session_id: Backend session id (None until the first reply)
        closed: Set once the handle is released
    """
    priming_text: str = field(repr=False)
    opening_reply: str = field(repr=False)
    handle_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sdk_session_id: Optional[str] = None
    closed: bool = False


class ModelBackend(ABC):
    """Model backend interface"""

    @abstractmethod
    async def create_session(self, priming_text: str, opening_reply: str) -> ModelSessionHandle:
        """Open a model session primed with hidden context and the opening reply"""
        pass

    @abstractmethod
    async def send_message(self, handle: ModelSessionHandle, text: str) -> str:
        """
        Send one user turn and return the reply text

        Raises:
            ModelBackendError: NETWORK or UNKNOWN failure
        """
        pass

    async def close_session(self, handle: ModelSessionHandle) -> None:
        """Release the session handle"""
        handle.closed = True


def build_system_prompt(priming_text: str, opening_reply: str) -> str:
    """Priming context plus the line the assistant has already said"""
    return (
        f"{priming_text}\n\n"
        f"You have already greeted the user with the following message, "
        f"continue the conversation from there:\n{opening_reply}"
    )


class ClaudeModelBackend(ModelBackend):
    """Claude Agent SDK model backend"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        auth_token: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 300.0
    ):
        """
        Initialize the Claude backend

        Args:
            api_key: CLAUDE_API_KEY
            auth_token: ANTHROPIC_AUTH_TOKEN (alternative to api_key)
            base_url: ANTHROPIC_BASE_URL for proxies
            model: Model name (SDK default when None)
            timeout: Upper bound for one turn (seconds)
        """
        if not api_key and not auth_token:
            raise ValueError("Missing authentication: CLAUDE_API_KEY or ANTHROPIC_AUTH_TOKEN")

        self.model = model
        self.timeout = timeout

        self._env_vars: Dict[str, str] = {}
        if api_key:
            self._env_vars["ANTHROPIC_API_KEY"] = api_key
        else:
            self._env_vars["ANTHROPIC_AUTH_TOKEN"] = auth_token
            if base_url:
                self._env_vars["ANTHROPIC_BASE_URL"] = base_url

        logger.info(f"ClaudeModelBackend initialized (model={model or 'default'})")

    def _create_options(self, handle: ModelSessionHandle) -> ClaudeAgentOptions:
        options = ClaudeAgentOptions(
            system_prompt=build_system_prompt(handle.priming_text, handle.opening_reply),
            allowed_tools=[],
            max_turns=1,
            env=self._env_vars,
            # Extended thinking is not supported by some API proxies
            max_thinking_tokens=0
        )
        if self.model:
            options.model = self.model

        if handle.sdk_session_id:
            options.resume = handle.sdk_session_id
            logger.debug(f"Resuming SDK session: {handle.sdk_session_id}")

        return options

    async def create_session(self, priming_text: str, opening_reply: str) -> ModelSessionHandle:
        # The SDK session itself is created lazily by the first turn
        handle = ModelSessionHandle(priming_text=priming_text, opening_reply=opening_reply)
        logger.info(f"Model session created: {handle.handle_id}")
        return handle

    async def send_message(self, handle: ModelSessionHandle, text: str) -> str:
        if handle.closed:
            raise ModelBackendError(ModelErrorCode.UNKNOWN, "Session handle is closed")

        try:
            return await asyncio.wait_for(self._run_turn(handle, text), timeout=self.timeout)
        except ModelBackendError:
            raise
        except (asyncio.TimeoutError, CLIConnectionError, ConnectionError) as e:
            logger.error(f"Model turn failed (network): {type(e).__name__}: {e}")
            raise ModelBackendError(ModelErrorCode.NETWORK, str(e)) from e
        except ClaudeSDKError as e:
            logger.error(f"Model turn failed: {type(e).__name__}: {e}")
            raise ModelBackendError(ModelErrorCode.UNKNOWN, str(e)) from e

    async def _run_turn(self, handle: ModelSessionHandle, text: str) -> str:
        response_parts = []
        client = ClaudeSDKClient(options=self._create_options(handle))
        await client.connect()
        try:
            await client.query(text)
            async for message in client.receive_response():
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            response_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    if message.session_id:
                        handle.sdk_session_id = message.session_id
                    if message.is_error:
                        raise ModelBackendError(ModelErrorCode.UNKNOWN, message.result or "error result")
        finally:
            await client.disconnect()

        reply = "\n".join(response_parts).strip()
        if not reply:
            raise ModelBackendError(ModelErrorCode.UNKNOWN, "Empty reply")
        return reply

    async def close_session(self, handle: ModelSessionHandle) -> None:
        await super().close_session(handle)
        logger.info(f"Model session released: {handle.handle_id} (sdk_session={handle.sdk_session_id or 'none'})")


__all__ = [
    "ModelSessionHandle",
    "ModelBackend",
    "ClaudeModelBackend",
    "build_system_prompt",
]
