"""
Contract State Ledger

An event-sourced, append-only ledger of contract value changes with:
- Signed, immutable state events per contract
- Supersession by reversing entries instead of edits
- Per-contract write serialization
- Current, historical and audit-timeline reads
- Materialized projections with cached reads
"""

__version__ = "0.1.0"
