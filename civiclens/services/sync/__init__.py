"""
Election Data Sync Service

Reconciles candidates, manifestos and fact checks arriving from independent,
partially-overlapping upstream feeds.

Key components:
- Adapters: Fetch and normalize data from each upstream source
- Matchers: Resolve candidate identity across sources
- Orchestrator: Run adapters in precedence order and audit each run
"""
