"""
Database package for the Artifact Approval engine.
"""
