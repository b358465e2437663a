"""
Shared fixtures
"""

import pytest

from cbt_companion.services.auth_state_machine import AuthStateMachine
from cbt_companion.services.conversation_controller import ConversationController

from fakes import OPENING_REPLY, PRIMING_TEXT, FakeIdentityClient, FakeModelBackend


@pytest.fixture
def identity():
    return FakeIdentityClient()


@pytest.fixture
def backend():
    return FakeModelBackend()


@pytest.fixture
def conversation(backend):
    return ConversationController(
        backend=backend,
        priming_text=PRIMING_TEXT,
        opening_reply=OPENING_REPLY
    )


@pytest.fixture
def auth(identity, conversation):
    return AuthStateMachine(
        identity=identity,
        conversation=conversation,
        cooldown_seconds=3,
        tick_interval=0.01
    )
