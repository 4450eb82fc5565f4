"""
Agent connections built on Python Fabric.
"""
