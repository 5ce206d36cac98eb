"""
CareCoord medication reminder service package.
"""
