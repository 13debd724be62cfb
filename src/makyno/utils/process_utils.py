"""Process management utilities for killing process trees."""

import os
import signal


def kill_process_tree(pid: int, sig: int = signal.SIGKILL) -> None:
    """Send signal to entire process group, falling back to single process.

    Commands are spawned with start_new_session=True so they get their own
    process group; killpg reaches shells and everything they forked.
    """
    try:
        pgid = os.getpgid(pid)
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        pass
    except OSError:
        # Fallback: process may not be a group leader
        try:
            os.kill(pid, sig)
        except (ProcessLookupError, PermissionError):
            pass
