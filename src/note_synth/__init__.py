"""note-synth: task intelligence and prioritization toolkit."""

__version__ = "0.1.0"
