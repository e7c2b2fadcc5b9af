"""
Voice bridge for the call director bot.

Realtime audio in and out of the call: per-participant turn capture and
transcription, the speaking registry, and playback that waits for silence.
No director or claim logic lives here (conversation package responsibility).
"""
