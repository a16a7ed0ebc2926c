"""
Pytest configuration for backend tests.

Adds the project root to Python path so imports like
'from streamrelay.xxx import ...' work without installing the package.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_dir = Path(__file__).parent.parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))


@pytest.fixture
def store():
    from streamrelay.services.store import InMemoryMessageStore

    return InMemoryMessageStore()


@pytest.fixture
def bus():
    from streamrelay.services.bus import InMemoryNotificationBus

    return InMemoryNotificationBus()
