"""
UI runner module.

Executes UI test cases with Playwright:
- Declarative locator resolution
- Keyword dispatch with variable injection
- Bounded step retries and sticky skip-on-failure
- Screenshot capture on failure
- Custom steps, page objects and code plugins
"""

from suiterunner.runner.custom_steps import (
    CodeContext,
    CustomCodeError,
    CustomStep,
    CustomStepContext,
    CustomStepNotFoundError,
    CustomStepRegistry,
    load_custom_step_modules,
)
from suiterunner.runner.keywords import (
    KeywordDispatcher,
    StepConfigurationError,
    UnsupportedKeywordError,
)
from suiterunner.runner.locators import UnknownStrategyError, resolve_locator
from suiterunner.runner.session import BrowserSession, RetryPolicy
from suiterunner.runner.test_runner import (
    TargetNotFoundError,
    TestRunner,
    UnsupportedTargetError,
)
from suiterunner.runner.ui_runner import InvalidTestCaseError, UIRunner

__all__ = [
    # Runners
    "TestRunner",
    "UIRunner",
    "KeywordDispatcher",
    "BrowserSession",
    "RetryPolicy",
    "resolve_locator",
    # Extension points
    "CodeContext",
    "CustomStep",
    "CustomStepContext",
    "CustomStepRegistry",
    "load_custom_step_modules",
    # Custom Exceptions
    "CustomCodeError",
    "CustomStepNotFoundError",
    "InvalidTestCaseError",
    "StepConfigurationError",
    "TargetNotFoundError",
    "UnknownStrategyError",
    "UnsupportedKeywordError",
    "UnsupportedTargetError",
]
