"""
DSL module for JSON test suite definitions.

Provides the suite models and the loader that reads them from disk.
"""

from suiterunner.dsl.models import (
    Assertion,
    AssertionType,
    ChainOperation,
    CustomStepFunction,
    FilterDefinition,
    LocatorDefinition,
    LocatorOptions,
    LocatorStrategy,
    PreProcessStep,
    StepKeyword,
    SuiteType,
    TestCase,
    TestCaseType,
    TestData,
    TestStep,
    TestSuite,
)
from suiterunner.dsl.parser import SuiteLoader, SuiteLoadError

__all__ = [
    # Models
    "Assertion",
    "AssertionType",
    "ChainOperation",
    "CustomStepFunction",
    "FilterDefinition",
    "LocatorDefinition",
    "LocatorOptions",
    "LocatorStrategy",
    "PreProcessStep",
    "StepKeyword",
    "SuiteType",
    "TestCase",
    "TestCaseType",
    "TestData",
    "TestStep",
    "TestSuite",
    # Loader
    "SuiteLoadError",
    "SuiteLoader",
]
