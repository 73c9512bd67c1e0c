"""
suiterunner - declarative JSON test execution engine.

Runs API (REST/SOAP) and browser UI test suites described as JSON documents,
threads variables between steps, and writes JSON result reports.
"""

__version__ = "0.1.0"
