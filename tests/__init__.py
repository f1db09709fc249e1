import os
import sys

# Add the parent directory to the path so we can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep tests away from real Redis servers and local .env settings
os.environ["ENABLE_REDIS"] = "false"
os.environ.setdefault("MONITOR_SENDER", "queue")
