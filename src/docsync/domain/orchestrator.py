"""Entry point running one synchronization pass per change event."""

from __future__ import annotations

from collections.abc import Mapping
from logging import getLogger
from typing import TYPE_CHECKING, Any

from ..config.sync import SyncConfig
from .model import (
    ID_FIELD,
    TYPE_FIELD,
    RelationshipAction,
    RelationshipEntry,
    SyncOutcome,
    format_timestamp,
)
from .normalization import normalize_document
from .ports import SystemClock
from .references import extract_references, resolve_referenced_types
from .reverse import propagate_reverse
from .rules import DEFAULT_RULES, RuleContext
from .summary import build_summary
from .upsert import (
    build_mapping_record,
    ensure_reference_field,
    load_existing,
    mapping_id,
    merge_relationships,
    upsert_derived,
    write_mapping_record,
)

if TYPE_CHECKING:
    from .model import ChangeEvent
    from .ports import Clock, DocumentStore
    from .rules import RelationshipRule

log = getLogger(__name__)


def apply_rule(rule: RelationshipRule, ctx: RuleContext) -> RelationshipEntry:
    """Run ``rule`` for the context document; write failures become ``skipped`` entries."""

    decision = rule.decide(ctx)
    if decision.skip_reason is not None:
        return RelationshipEntry(
            target_id=decision.target_id,
            target_type=rule.target_type,
            action=RelationshipAction.SKIPPED,
            reason=decision.skip_reason,
        )

    existing = load_existing(ctx.store, decision.target_id)
    try:
        plan = rule.build_plan(ctx, decision.target_id, existing)
        result = upsert_derived(ctx.store, plan, existing)
    except Exception:  # noqa: BLE001
        log.exception(
            "Failed to upsert %s %s for %s",
            rule.target_type,
            decision.target_id,
            ctx.view.base_id,
        )
        return RelationshipEntry(
            target_id=decision.target_id,
            target_type=rule.target_type,
            action=RelationshipAction.SKIPPED,
            reason=rule.failure_reason,
        )

    for link in plan.back_references:
        ensure_reference_field(ctx.store, link.document_id, link.field_name, link.reference_id)

    return RelationshipEntry(
        target_id=plan.target_id,
        target_type=plan.target_type,
        action=result.action,
        reason=plan.reasons[result.action],
    )


class DocumentMappingEngine:
    """Keeps derived records and mapping records consistent with source documents.

    The engine holds no per-document state: store, clock and configuration are
    injected once and every call to :meth:`handle` is independent.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock | None = None,
        config: SyncConfig | None = None,
        rules: Mapping[str, RelationshipRule] | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or SyncConfig()
        self.rules = dict(DEFAULT_RULES if rules is None else rules)

    def handle(self, event: ChangeEvent) -> SyncOutcome:
        document = event.current
        if not isinstance(document, Mapping) or not document.get(ID_FIELD):
            log.warning(
                "Change event missing document payload (id=%s, operation=%s)",
                event.document_id,
                event.operation,
            )
            return SyncOutcome(noop=True)
        return self.sync_document(document)

    def sync_document(self, document: Mapping[str, Any]) -> SyncOutcome:
        view = normalize_document(document)
        if view is None:
            log.warning(
                "Document missing id or type (id=%r, type=%r)",
                document.get(ID_FIELD),
                document.get(TYPE_FIELD),
            )
            return SyncOutcome(noop=True)

        now = self.clock.now()
        reference_ids = extract_references(document, max_depth=self.config.reference_max_depth)
        referenced_types = resolve_referenced_types(self.store, reference_ids)
        outcome = SyncOutcome(
            base_id=view.base_id,
            source_type=view.document_type,
            referenced_types=referenced_types,
        )

        rule = self.rules.get(view.document_type)
        if rule is not None:
            ctx = RuleContext(
                document=document,
                view=view,
                referenced_types=referenced_types,
                store=self.store,
                config=self.config,
                now=now,
            )
            outcome.relationships.append(apply_rule(rule, ctx))

        summary = build_summary(document)
        if not outcome.relationships and not summary and not referenced_types:
            log.info(
                "No relationship updates required for %s (%s)", view.base_id, view.document_type
            )
            outcome.noop = True
            return outcome
        if not outcome.relationships and not referenced_types:
            log.info(
                "Snapshot refreshed for %s (%s) without relationships",
                view.base_id,
                view.document_type,
            )

        timestamp = format_timestamp(now)
        existing = load_existing(self.store, mapping_id(view.base_id))
        record = build_mapping_record(
            document,
            base_id=view.base_id,
            status=view.status,
            tags=view.sorted_tags,
            referenced_types=referenced_types,
            relationships=merge_relationships(outcome.relationships, existing),
            summary=summary,
            timestamp=timestamp,
        )
        outcome.mapping_written = write_mapping_record(self.store, record, existing)
        outcome.reverse_synced = propagate_reverse(
            self.store,
            outcome.relationships,
            source_id=view.base_id,
            source_type=view.document_type,
            timestamp=timestamp,
            concurrency=self.config.reverse_concurrency,
            max_depth=self.config.reference_max_depth,
        )

        for entry in outcome.relationships:
            log.info(
                "Relationship recorded: %s (%s) -> %s (%s) %s: %s",
                view.base_id,
                view.document_type,
                entry.target_id,
                entry.target_type,
                entry.action,
                entry.reason,
            )
        return outcome
