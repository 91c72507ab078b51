import pytest

from idesk.sla.domain import BreachEvaluator, SlaPolicyStore, SlaStateTracker


@pytest.fixture
def policy_store() -> SlaPolicyStore:
    store = SlaPolicyStore()
    store.reset_to_defaults()
    return store


@pytest.fixture
def tracker(policy_store) -> SlaStateTracker:
    return SlaStateTracker(policy_store)


@pytest.fixture
def evaluator(policy_store) -> BreachEvaluator:
    return BreachEvaluator(policy_store)
