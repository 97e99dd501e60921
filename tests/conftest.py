import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from workflowbot.access import AccessControl
from workflowbot.crypto import CredentialCipher
from workflowbot.github_client import TriggerResult, WorkflowRun, WorkflowRunList
from workflowbot.telegram.handler import CommandHandler
from workflowbot.token_store import MemoryTokenStore


def make_runs(*runs: WorkflowRun) -> WorkflowRunList:
    return WorkflowRunList(total_count=len(runs), runs=list(runs))


@pytest.fixture
def cipher():
    return CredentialCipher(b"k" * 32)


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def github():
    client = MagicMock()
    client.list_runs = AsyncMock(return_value=make_runs())
    client.dispatch = AsyncMock(return_value=TriggerResult(accepted=True, status=204))
    client.rerun = AsyncMock(return_value=TriggerResult(accepted=True, status=201))
    client.close = AsyncMock()
    return client


@pytest.fixture
def handler(store, cipher, github):
    return CommandHandler(
        access=AccessControl(),
        store=store,
        cipher=cipher,
        github=github,
        global_token=None,
    )
