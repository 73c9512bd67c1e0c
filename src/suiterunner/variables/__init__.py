"""
Variables module.

Provides the scoped run-time store, the persisted registry, and the
pre-processor pipeline that feeds them.
"""

from suiterunner.variables.preprocessor import PreProcessError, PreProcessor, encrypt_text
from suiterunner.variables.registry import (
    AddVariableResult,
    ConflictType,
    Variable,
    VariableConflict,
    VariableRegistry,
    VariableType,
)
from suiterunner.variables.store import (
    VariableScope,
    VariableStore,
    VariableStoreError,
)

__all__ = [
    # Store
    "VariableScope",
    "VariableStore",
    "VariableStoreError",
    # Registry
    "AddVariableResult",
    "ConflictType",
    "Variable",
    "VariableConflict",
    "VariableRegistry",
    "VariableType",
    # Pre-processing
    "PreProcessError",
    "PreProcessor",
    "encrypt_text",
]
