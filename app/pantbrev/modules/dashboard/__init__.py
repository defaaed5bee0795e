"""
Overview dashboard and deed archive.
"""
