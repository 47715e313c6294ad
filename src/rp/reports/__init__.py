"""Deliverable assembly and citations."""

from rp.reports.assembler import DeliverableAssembler
from rp.reports.citations import CitationRegistry, build_citations

__all__ = ["CitationRegistry", "DeliverableAssembler", "build_citations"]
