"""Platform helpers: files and subprocesses."""
