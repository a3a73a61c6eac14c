"""
Quorum E2E Tests Package

Unit tests run against the in-memory SimulatedCluster:
   pytest quorum_e2e/tests/ -v

Live-cluster tests live in cluster_test_cases/ and need --cluster-url.
"""
