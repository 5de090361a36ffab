# /convoflow/services/scenario_registry.py

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from convoflow.models.scenario import Scenario
from convoflow.workflows.errors import ScenarioDefinitionError, ScenarioNotFound
from convoflow.workflows.validator import normalize_scenario, validate_scenario

logger = logging.getLogger(__name__)


class ScenarioRegistry:
    """
    Holds the validated, normalized scenario definitions in registration order.
    Read-only for the engine; writes come from startup loading and the admin API.
    """

    def __init__(self, action_capabilities: Optional[Callable[[], Iterable[str]]] = None, collection=None):
        self._scenarios: Dict[str, Scenario] = {}
        self._action_capabilities = action_capabilities
        self.collection = collection
        logger.info("ScenarioRegistry initialized.")

    def register(self, scenario: Scenario) -> str:
        """
        Validate and store a scenario.

        Raises:
            ScenarioDefinitionError: the definition is invalid or the id is taken
        """
        if scenario.id in self._scenarios:
            raise ScenarioDefinitionError(
                scenario.id, [f"Scenario id '{scenario.id}' is already registered"], ["DUPLICATE_SCENARIO"]
            )

        known_actions = list(self._action_capabilities()) if self._action_capabilities else None
        failures = validate_scenario(scenario, known_actions, self._scenarios.keys())
        if failures:
            raise ScenarioDefinitionError(
                scenario.id, [f["message"] for f in failures], [f["error_code"] for f in failures]
            )

        self._scenarios[scenario.id] = normalize_scenario(scenario)
        logger.info(f"Registered scenario {scenario.id} ('{scenario.name}') for company {scenario.company_id}.")
        return scenario.id

    def get(self, scenario_id: str) -> Scenario:
        scenario = self._scenarios.get(scenario_id)
        if scenario is None:
            raise ScenarioNotFound(scenario_id)
        return scenario

    def find(self, scenario_id: str) -> Optional[Scenario]:
        return self._scenarios.get(scenario_id)

    def list_active(self, company_id: str) -> List[Scenario]:
        return [s for s in self._scenarios.values() if s.is_active and s.company_id == company_id]

    async def persist(self, scenario: Scenario) -> None:
        if self.collection is None:
            return
        doc = scenario.model_dump(mode="json")
        doc["_id"] = doc.pop("id")
        await self.collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def load_from_db(self) -> int:
        """
        Loads stored scenarios; invalid definitions are logged and skipped.

        A scenario may route to one stored after it, so definitions rejected only
        for unknown route targets are retried until a pass registers nothing new.
        """
        if self.collection is None:
            return 0
        logger.info("Loading automation scenarios from database...")
        try:
            docs = await self.collection.find({}).sort("created_at", 1).to_list(length=None)
        except Exception as e:
            logger.error(f"Failed to load scenarios from database: {e}", exc_info=True)
            return 0

        pending: List[Scenario] = []
        for doc in docs:
            doc = dict(doc)
            doc["id"] = str(doc.pop("_id"))
            if doc["id"] in self._scenarios:
                continue
            try:
                pending.append(Scenario.model_validate(doc))
            except ValueError as e:
                logger.error(f"Skipping stored scenario {doc['id']}: {e}")

        loaded = 0
        while pending:
            deferred: List[Tuple[Scenario, ScenarioDefinitionError]] = []
            for scenario in pending:
                try:
                    self.register(scenario)
                    loaded += 1
                except ScenarioDefinitionError as e:
                    if set(e.error_codes) == {"UNKNOWN_ROUTE_TARGET"}:
                        deferred.append((scenario, e))
                    else:
                        logger.error(f"Skipping stored scenario {scenario.id}: {e}")

            if len(deferred) == len(pending):
                for scenario, e in deferred:
                    logger.error(f"Skipping stored scenario {scenario.id}: {e}")
                break
            pending = [scenario for scenario, _ in deferred]

        logger.info(f"Successfully loaded {loaded} scenarios from database.")
        return loaded
