"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the converter ramp.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - The ramp never retains or loses funds
2. atomicity.py - Settlements are all-or-nothing
3. budget.py - Nothing beyond the declared maximum spend is pulled
4. fee_rounding.py - Fees and oracle conversions round up
5. oracle_consistency.py - The loan system charges exactly what was estimated
6. reentrancy.py - Nested entry during an external call is refused

These tests use hypothesis for property-based testing.
"""
