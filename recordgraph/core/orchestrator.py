"""
Commit orchestrator: the build -> resolve -> order -> commit cycle.

One cycle runs through these stages:

    reclaim fields -> resolve external pre-existence -> reclaim relationships
    -> compute order -> partition by privilege -> commit ordinary
    -> commit privileged -> clear the registration set

``simulate`` runs the same stages against the mock store, with a full
(non-protective) field reclamation and privileged records allowed.
"""
import logging
from typing import Any, Dict, List, Set
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from recordgraph.core.fields import EntityType, Record

logger = logging.getLogger("CommitOrchestrator")


class PrivilegedCommitError(PermissionError):
    """Privileged records were queued but the execution policy refuses to write them."""


class PrivilegedLinkError(ValueError):
    """An ordinary record links to a privileged one that is committed after it."""


class CommitResult(BaseModel):
    builders: List[Any] = Field(default_factory=list)
    order: List[EntityType] = Field(default_factory=list)
    ids: Dict[UUID, Any] = Field(default_factory=dict)
    simulated: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)


class CommitOrchestrator:
    def __init__(self, context: Any) -> None:
        self.context = context
        self.last_failure_diagnostics: List[Dict[str, Any]] = []

    def commit(self) -> CommitResult:
        """
        Commit every registered builder through the persistence engine.

        Raises:
            PrivilegedCommitError: privileged records queued under a policy
                that forbids them; nothing is written
            PrivilegedLinkError: an ordinary record links to a privileged one
                queued in the same cycle; nothing is written
            Exception: whatever the engine raised; diagnostics are captured
                first and the registration set is left intact
        """
        builders = self._resolve(for_commit=True)
        if not builders:
            logger.info("Nothing registered, skipping commit")
            self.context.registration.clear()
            return CommitResult()

        order = self.context.graph.get_topological_sort()
        ordinary = [b for b in builders if not b.is_privileged()]
        privileged = [b for b in builders if b.is_privileged()]
        if privileged and not self.context.policy.permits_privileged_commit():
            raise PrivilegedCommitError(
                f"{len(privileged)} privileged records queued but privileged commits are not permitted: "
                + ", ".join(sorted({b.entity_type for b in privileged}))
            )
        if privileged:
            self._check_privileged_links(ordinary)

        engine = self.context.engine
        ordinary_uow = engine.create_unit_of_work(order)
        privileged_uow = engine.create_unit_of_work(order)
        payloads = self.context.discovery.prepare_uow(builders, privileged_uow, ordinary_uow, for_commit=True)

        logger.info(f"Committing {len(ordinary)} ordinary and {len(privileged)} privileged records in order {order}")
        self._run(ordinary_uow)
        self._apply_results(ordinary, payloads)
        if privileged_uow.has_work():
            self._run(privileged_uow)
            self._apply_results(privileged, payloads)

        return self._finish(builders, order, payloads, simulated=False)

    def simulate(self) -> CommitResult:
        """Run the cycle against the mock store; shelved values are all included."""
        builders = self._resolve(for_commit=False)
        if not builders:
            logger.info("Nothing registered, skipping simulation")
            self.context.registration.clear()
            return CommitResult(simulated=True)

        order = self.context.graph.get_topological_sort()
        uow = self.context.mock_store.create_unit_of_work(order)
        payloads = self.context.discovery.prepare_uow(builders, uow, uow, for_commit=False)
        logger.info(f"Simulating {len(builders)} records in order {order}")
        self._run(uow)
        self._apply_results(builders, payloads)
        return self._finish(builders, order, payloads, simulated=True)

    ##############################
    # Stages
    ##############################

    def _resolve(self, for_commit: bool) -> List[Any]:
        """
        Reclaim fields and relationships until no new builder joins the set.

        Materializing a relationship can register a related builder that was
        not registered before; it goes through the same stages.
        """
        registration = self.context.registration
        discovery = self.context.discovery
        processed: Set[UUID] = set()

        while True:
            batch = [b for b in registration if not b.is_persisted() and b.builder_id not in processed]
            if not batch:
                break
            discovery.apply_sync_links()
            for builder in batch:
                self.context.graph.node(builder.entity_type)
                builder.reclaim_suspended_field_values(for_commit)
            # Re-run every round: a builder joining later can be the target
            discovery.determine_pre_existing(self._in_flight())
            for builder in batch:
                builder.reclaim_relationships()
                processed.add(builder.builder_id)

        return self._in_flight()

    def _check_privileged_links(self, ordinary: List[Any]) -> None:
        """
        Refuse ordinary records pointing at unpersisted privileged ones.

        The ordinary unit of work is written first, so such a link could
        never be filled in.
        """
        discovery = self.context.discovery
        problems = []
        for builder in ordinary:
            targets = [(link.field, link.parent) for link in discovery.parents_of(builder)]
            targets.extend(
                (ref.relationship_field, ref.resolved_builder)
                for ref in discovery.references_of(builder)
                if ref.resolved_builder is not None
            )
            for field, target in targets:
                if target.is_privileged() and not target.is_persisted():
                    problems.append(f"{builder.entity_type}.{field} -> {target.entity_type}")
        if problems:
            raise PrivilegedLinkError(
                "Ordinary records cannot link to privileged records committed in the same cycle: "
                + ", ".join(problems)
            )

    def _in_flight(self) -> List[Any]:
        return [b for b in self.context.registration if not b.is_persisted()]

    def _run(self, uow: Any) -> None:
        try:
            uow.commit_work()
        except Exception as e:
            self._capture_diagnostics(e)
            raise

    def _capture_diagnostics(self, error: Exception) -> None:
        self.last_failure_diagnostics = [
            {
                "entity_type": b.entity_type,
                "builder_id": str(b.builder_id),
                "privileged": b.is_privileged(),
                "record": dict(b.record.fields),
                "shelved": dict(b.shelved_fields),
            }
            for b in self.context.registration
        ]
        logger.error(f"Commit failed: {error}")
        for entry in self.last_failure_diagnostics:
            logger.error(f"Pending {entry['entity_type']} ({entry['builder_id']}): {entry['record']}")

    @staticmethod
    def _apply_results(builders: List[Any], payloads: Dict[UUID, Record]) -> None:
        """Copy ids and engine-filled link values back onto the builders' records."""
        for builder in builders:
            payload = payloads[builder.builder_id]
            builder.record.id = payload.id
            for name, value in payload.fields.items():
                builder.record.put(name, value)

    def _finish(
        self, builders: List[Any], order: List[EntityType], payloads: Dict[UUID, Record], simulated: bool
    ) -> CommitResult:
        self.context.registration.clear()
        for builder in builders:
            self.context.discovery.forget(builder)
        self.last_failure_diagnostics = []
        logger.info(f"{'Simulated' if simulated else 'Committed'} {len(builders)} records")
        return CommitResult(
            builders=builders,
            order=order,
            ids={b.builder_id: payloads[b.builder_id].id for b in builders},
            simulated=simulated,
        )
