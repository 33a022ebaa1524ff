"""Test package for the reaction-age test.

Core tests drive the engine with the virtual-time scheduler, so whole rounds
run instantly and deterministically.  UI smoke tests use pygame's dummy video
driver to avoid opening real windows.  Run ``pytest`` from the project root.
"""
