"""
quorum-e2e: network-fault and convergence harness for quorum clusters

Injects network faults between groups of nodes, drives concurrent write
load, and verifies that the cluster never runs two masters, never loses an
acknowledged write, and reconverges on one cluster state once the fault
heals.
"""

__version__ = "0.1.0"
