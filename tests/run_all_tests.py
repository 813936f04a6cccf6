#!/usr/bin/env python3
"""
Test runner for the Quiz Battle bot.
Runs all unit and integration tests and prints a summary report.
"""
import unittest
import sys
import time
from pathlib import Path

# Make quizbattle and tests importable when run as a script
sys.path.insert(0, str(Path(__file__).parent.parent))

TEST_MODULES = [
    'tests.test_level_system',
    'tests.test_effect_ledger',
    'tests.test_battle_engine',
    'tests.test_battle_controller',
    'tests.test_economy',
    'tests.test_data_manager',
    'tests.test_config_manager',
    'tests.test_bot_discord_integration',
    'tests.test_integration_comprehensive',
    'tests.test_main',
]

CATEGORIES = {
    'unit': ['tests.test_level_system', 'tests.test_effect_ledger', 'tests.test_battle_engine',
             'tests.test_config_manager'],
    'battle': ['tests.test_battle_engine', 'tests.test_battle_controller'],
    'economy': ['tests.test_level_system', 'tests.test_effect_ledger', 'tests.test_economy'],
    'data': ['tests.test_data_manager'],
    'config': ['tests.test_config_manager', 'tests.test_main'],
    'bot': ['tests.test_bot_discord_integration'],
    'integration': ['tests.test_integration_comprehensive'],
}


def load_suite(module_names):
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()
    for module_name in module_names:
        try:
            suite.addTest(loader.loadTestsFromName(module_name))
            print(f"✓ Loaded tests from {module_name}")
        except (ImportError, AttributeError) as e:
            print(f"✗ Failed to load {module_name}: {e}")
    return suite


def run_test_suite(module_names=TEST_MODULES):
    """Run the test suite and print a report."""
    print("=" * 70)
    print("Quiz Battle - Test Suite")
    print("=" * 70)

    suite = load_suite(module_names)

    print("\n" + "=" * 70)
    print("Running Tests...")
    print("=" * 70)

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)

    start_time = time.time()
    result = runner.run(suite)
    end_time = time.time()

    print("\n" + "=" * 70)
    print("Test Summary Report")
    print("=" * 70)

    total_tests = result.testsRun
    failures = len(result.failures)
    errors = len(result.errors)
    skipped = len(result.skipped)
    passed = total_tests - failures - errors - skipped

    print(f"Total Tests Run: {total_tests}")
    print(f"Passed: {passed}")
    print(f"Failed: {failures}")
    print(f"Errors: {errors}")
    print(f"Skipped: {skipped}")
    print(f"Success Rate: {(passed/total_tests)*100:.1f}%" if total_tests > 0 else "N/A")
    print(f"Execution Time: {end_time - start_time:.2f} seconds")

    for label, problems in (("FAILURES", result.failures), ("ERRORS", result.errors)):
        if problems:
            print("\n" + "-" * 50)
            print(f"{label}:")
            print("-" * 50)
            for test, traceback in problems:
                print(f"\n{test}:")
                print(traceback)

    return failures == 0 and errors == 0


if __name__ == '__main__':
    if len(sys.argv) > 1:
        category = sys.argv[1]
        if category not in CATEGORIES:
            print(f"Unknown category: {category}")
            print(f"Available categories: {', '.join(CATEGORIES)}")
            sys.exit(1)
        success = run_test_suite(CATEGORIES[category])
    else:
        success = run_test_suite()

    sys.exit(0 if success else 1)
