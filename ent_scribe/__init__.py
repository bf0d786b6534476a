"""
ENT Scribe - Ambient Clinical Scribe

Records a physician-patient encounter in fixed-size chunks, transcribes the
chunks while the visit continues and turns the assembled transcript into a
structured clinical note.
"""

__version__ = "1.0.0"
__author__ = "ent-scribe"
