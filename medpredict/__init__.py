"""
MedPredict Backend

Disease risk estimation with a locally persisted prediction history
for heart, diabetes, liver and kidney screening forms.
"""

__version__ = "1.0.0"
