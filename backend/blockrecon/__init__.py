"""
Block stream reconciler.
Cross-checks per-block transaction counts from a streaming block feed against a
reference JSON-RPC node and reports discrepancies over a bounded observation window.
"""
