"""Proof artifact attached to a listening verdict.

The artifact commits to (track id, whole seconds listened, lifecycle start,
clean flag). It is a placeholder commitment: whoever verifies a claim decides
what it checks, so the only guarantees here are determinism and that every
input changes the output.
"""
import hashlib
import math

def proof_payload(track_id: str, listened_seconds: float, started_at: int, clean: bool) -> str:
    return f"{track_id}|{math.floor(listened_seconds)}|{started_at}|{'true' if clean else 'false'}"

def generate_proof_artifact(track_id: str, listened_seconds: float, started_at: int, clean: bool) -> str:
    """Returns a bytes32-shaped hex string (0x + 64 hex digits)."""
    data = proof_payload(track_id, listened_seconds, started_at, clean)
    return "0x" + hashlib.sha256(data.encode("utf-8")).hexdigest()
