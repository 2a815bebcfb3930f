"""Phase orchestration for external coding agent CLIs.

Each iteration spawns the agent once per phase (implement, review, finalize) in the
project directory. The agent edits files, commits and updates the task list itself;
this package only builds prompts, supervises the subprocess, classifies failures and
reads completion markers from stdout.

Modules:

- `backend`: subprocess spawning with streamed output, timeouts and signal forwarding.
- `failure_classifier` and `retry`: error kinds and bounded backoff.
- `phases`: the three-phase iteration; `runner`: the loop over iterations.
- `prompts`, `routing`, `markers`: phase prompts, per-phase agent/model choice and
  stdout marker parsing.
"""
