"""EDEN conversation core: episodic memory, grounding, voice signals and orchestration."""

__version__ = "0.1.0"
