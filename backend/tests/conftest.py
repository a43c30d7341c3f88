import sys
from pathlib import Path

# Ensure repository root is on sys.path so 'import backend' works
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from backend.app.config import RULES_DIR
from backend.app.orchestration.classify import StubToxicityClassifier
from backend.app.orchestration.multimodal import StubImageAnalyzer
from backend.app.safety.guard import RuleScanner, load_rule_table
from backend.app.services.moderation import ModerationService


# Force pytest-anyio to use asyncio backend (avoid requiring 'trio')
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def lenient_table():
    return load_rule_table(RULES_DIR / "severe_terms_lenient.json")


@pytest.fixture(scope="session")
def strict_table():
    return load_rule_table(RULES_DIR / "severe_terms_strict.json")


@pytest.fixture
def scanner(lenient_table):
    return RuleScanner(lenient_table)


@pytest.fixture
def make_service(scanner):
    """Build a ModerationService around deterministic stubs."""

    def _make(classifier=None, image_analyzer=None, **kwargs):
        return ModerationService(
            scanner,
            classifier or StubToxicityClassifier(score=0.01, label="toxic"),
            image_analyzer or StubImageAnalyzer(),
            **kwargs,
        )

    return _make
