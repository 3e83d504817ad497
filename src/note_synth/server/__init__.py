"""HTTP server for note-synth."""

from note_synth.server.app import build_services, create_app, verify_signature

__all__ = ["build_services", "create_app", "verify_signature"]
