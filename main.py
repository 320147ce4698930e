"""
POLICE vs THIEVES - realtime session client

Connects to a session server, joins a room and plays a location-based
chase with chat, movement stats and push-to-talk voice.
"""
import io
import sys

# Fix Windows console encoding for rich output
if sys.platform == 'win32':
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8')

from client.main import run


if __name__ == "__main__":
    sys.exit(run())
