"""
Entitlement policy constants.

These values are stable across environments and do not need env-var overrides.
For operational parameters that vary per environment (payment switch, backend URLs),
see config.py.
"""

# --- Concurrent workspaces per tier ---
MAX_PARALLEL_WORKSPACES_FREE = 4
MAX_PARALLEL_WORKSPACES_PAID = 16

# --- Workspace timeout durations ---
TIMEOUT_DURATION_SHORT = "30m"
TIMEOUT_DURATION_LONG = "60m"

# --- Usage limit warning threshold (fraction of the spending limit) ---
USAGE_LIMIT_WARNING_RATIO = 0.8

# --- Phases that do not count against the parallel workspace cap ---
NON_COUNTING_PHASES: frozenset[str] = frozenset({"preparing"})
