"""
Data Connector (Stage 4).

Prepares a connection descriptor for every selected source and, when the
warehouse capability is connected, a data-share connection to it.
"""

from __future__ import annotations

from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    AccessLevel,
    CapabilityStatus,
    ConnectionContext,
    ConnectionStatus,
    ConnectionSummary,
    DataConnection,
    DatasetDescriptor,
    RankedSource,
    RetrievalMethod,
    StageName,
    TrustLevel,
)
from rp.utils.text import detect_geography, extract_keywords

WAREHOUSE_SOURCE_ID = "warehouse"


class DataConnectorStage(Stage):
    """Stage 4: Data connections."""

    name = StageName.DATA_CONNECTOR
    reads = (StageName.PROMPT_ENHANCER, StageName.DATA_SOURCE_MANAGER)

    def _connection(self, source: RankedSource, ctx: StageContext) -> DataConnection:
        catalog_entry = ctx.catalog.get(source.id)
        datasets = tuple(catalog_entry.datasets) if catalog_entry else ()
        if source.requires_auth:
            status = ConnectionStatus.REQUIRES_CREDENTIALS
            notes = f"{source.name} requires credentials before extraction."
        else:
            status = ConnectionStatus.READY
            notes = f"{source.name} is publicly accessible."
        return DataConnection(
            source_id=source.id,
            name=source.name,
            access=source.access,
            trust_level=source.trust_level,
            status=status,
            notes=notes,
            url=source.url,
            datasets=datasets,
        )

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        enhanced = state.enhanced_prompt
        selection = state.sources
        question = state.input.question

        if selection is not None:
            sector, function, geography = selection.sector, selection.function, selection.geography
        elif enhanced is not None:
            sector, function = enhanced.triage.sector, enhanced.triage.function
            geography = enhanced.geography or "Global"
        else:
            sector, function = "General", "Market Analysis"
            geography = detect_geography(question) or "Global"

        context = ConnectionContext(
            sector=sector,
            function=function,
            geography=geography,
            timeframe=enhanced.timeframe if enhanced else None,
            keywords=tuple(extract_keywords(question)),
        )

        connections: list[DataConnection] = []
        warehouse = ctx.capabilities.warehouse
        if await warehouse.connect() is CapabilityStatus.CONNECTED:
            connections.append(
                DataConnection(
                    source_id=WAREHOUSE_SOURCE_ID,
                    name="Analytical warehouse",
                    access=AccessLevel.PAID,
                    trust_level=TrustLevel.VERIFIED,
                    status=ConnectionStatus.READY,
                    notes="Read-only data share queried with generated SQL probes.",
                    datasets=(
                        DatasetDescriptor(
                            title="Warehouse tables",
                            description="Internal tables exposed through the data share",
                            retrieval_method=RetrievalMethod.DATA_SHARE,
                        ),
                    ),
                )
            )

        if selection is not None:
            for source in selection.recommended + selection.supplementary:
                connections.append(self._connection(source, ctx))

        summary = ConnectionSummary(context=context, connections=tuple(connections))
        ready = sum(1 for c in connections if c.status is ConnectionStatus.READY)
        self.log_info("Connections prepared", total=len(connections), ready=ready)
        return self.complete(summary, f"Prepared {len(connections)} connection(s) for data ingestion.")
