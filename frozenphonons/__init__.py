"""
The initialization Class,
In this way it is a very clean module
"""

__all__ = ["Units", "Errors", "Methods", "Settings", "Structure", "ForceConstants",
           "Phonons", "ModeDatabase", "Supercell", "Ensemble"]
