import os

# Keep test runs from writing per-run log files under logs/
os.environ.setdefault("AWARDS_LOG_TO_FILE", "0")
