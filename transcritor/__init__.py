"""
transcritor: progressive transcription of interview recordings.

Uploaded audio/video is normalized and split into fixed-length chunks with
ffmpeg, each chunk is transcribed with the OpenAI speech-to-text API, speakers
are labeled by a chat model, and the resulting segments are compacted into
minute-long blocks. Progress is persisted per chunk so clients can poll it.
"""

__version__ = "0.1.0"
